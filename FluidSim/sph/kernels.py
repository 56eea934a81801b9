# -- SPH Smoothing Kernels -- #

'''
Smoothing kernel functions for SPH interpolation.

Implements the cubic spline kernel in 2D and 3D with its gradient,
written in terms of the support radius h (the kernel vanishes for
r >= h). The smoothing length is fixed per kernel instance and equals
twice the particle radius.

Key properties of a valid SPH kernel:
- Normalization: integral of W over the domain = 1
- Compact support: W = 0 for r >= h
- Positivity: W >= 0 within support
- Antisymmetric gradient: grad_W(-r) = -grad_W(r)

References:
-----------
Monaghan (1992) -- Smoothed Particle Hydrodynamics
Koschier et al. (2019) -- SPH Techniques for the Physics Based
    Simulation of Fluids and Solids
'''

from __future__ import annotations

import math
from typing import Protocol

import numpy as np


# Displacements shorter than this fraction of h have no direction
ZERO_DISTANCE_RATIO: float = 1e-9


######################################################################
# -- Kernel Protocol -- #
######################################################################

class SphKernel(Protocol):
    '''Protocol for SPH smoothing kernel functions.'''

    @property
    def smoothingLength(self) -> float:
        '''Support radius h [m].'''
        ...

    @property
    def dimensions(self) -> int:
        '''Number of spatial dimensions (2 or 3).'''
        ...

    @property
    def maxGradient(self) -> float:
        '''Largest gradient magnitude over the support.'''
        ...

    def evaluate(self, r: float) -> float:
        '''Evaluate kernel W(r) [1/m^dim].'''
        ...

    def gradient(self, rVec: np.ndarray) -> np.ndarray:
        '''Evaluate kernel gradient for the displacement r_i - r_j.'''
        ...

    def evaluateBatch(self, distances: np.ndarray) -> np.ndarray:
        '''Evaluate W for an array of distances.'''
        ...

    def gradientBatch(self, drVecs: np.ndarray, distances: np.ndarray) -> np.ndarray:
        '''Evaluate gradients for an array of displacements.'''
        ...


######################################################################
# -- Cubic Spline Kernel -- #
######################################################################

class CubicSplineKernel:
    '''
    Cubic spline smoothing kernel with support radius h.

    With q = r/h:

    W(q) = k * {
        6*q^3 - 6*q^2 + 1    for 0 <= q < 1/2
        2*(1 - q)^3          for 1/2 <= q < 1
        0                    for q >= 1
    }

    Normalization constants (k):
        2D: k = 40 / (7 * pi * h^2)
        3D: k = 8 / (pi * h^3)

    Parameters:
    -----------
    smoothingLength : float
        Support radius h [m]
    dimensions : int
        Number of spatial dimensions (2 or 3)
    '''

    def __init__(self, smoothingLength: float, dimensions: int = 3) -> None:
        if dimensions not in (2, 3):
            raise ValueError(f'Cubic spline kernel needs 2 or 3 dimensions, got {dimensions}')

        self._h = float(smoothingLength)
        self._dimensions = dimensions

        if dimensions == 2:
            self._k = 40.0 / (7.0 * math.pi * self._h ** 2)
        else:
            self._k = 8.0 / (math.pi * self._h ** 3)

        # dW/dq prefactor l = 6k; the chain rule adds 1/h through grad q
        self._l = 6.0 * self._k

    @property
    def smoothingLength(self) -> float:
        '''Support radius h [m].'''
        return self._h

    @property
    def dimensions(self) -> int:
        '''Number of spatial dimensions.'''
        return self._dimensions

    @property
    def normalization(self) -> float:
        '''Normalization constant k, equal to W(0).'''
        return self._k

    @property
    def maxGradient(self) -> float:
        '''Peak |grad_W| (at q = 1/3): 2k / h.'''
        return 2.0 * self._k / self._h

    def evaluate(self, r: float) -> float:
        '''
        Evaluate cubic spline kernel W(r).

        Parameters:
        -----------
        r : float
            Distance between particles [m]

        Returns:
        --------
        float : Kernel value [1/m^dim]
        '''
        q = r / self._h

        if q < 0.5:
            # Inner region: 6*q^3 - 6*q^2 + 1
            return self._k * (6.0 * q * q * q - 6.0 * q * q + 1.0)
        elif q < 1.0:
            # Outer region: 2*(1 - q)^3
            oneMinusQ = 1.0 - q
            return self._k * 2.0 * oneMinusQ * oneMinusQ * oneMinusQ
        else:
            return 0.0

    def gradient(self, rVec: np.ndarray) -> np.ndarray:
        '''
        Evaluate kernel gradient vector grad_W.

        grad_W = l * f(q) * rVec / (|rVec| * h), with l = 6k and
        f(q) = q(3q - 2) for q < 1/2, -(1 - q)^2 for 1/2 <= q < 1

        Parameters:
        -----------
        rVec : np.ndarray
            Vector from particle j to particle i (r_i - r_j) [m]

        Returns:
        --------
        np.ndarray : Gradient vector [1/m^(dim+1)]
        '''
        rVec = np.asarray(rVec, dtype=np.float64)
        r = float(np.linalg.norm(rVec))
        q = r / self._h

        if q < ZERO_DISTANCE_RATIO or q >= 1.0:
            return np.zeros_like(rVec)

        gradQ = rVec / (r * self._h)
        if q < 0.5:
            return self._l * q * (3.0 * q - 2.0) * gradQ
        else:
            oneMinusQ = 1.0 - q
            return -self._l * oneMinusQ * oneMinusQ * gradQ

    ######################################################################
    # -- Vectorized (Batch) Operations -- #
    ######################################################################

    def evaluateBatch(self, distances: np.ndarray) -> np.ndarray:
        '''
        Evaluate kernel W(r) for an array of distances.

        Parameters:
        -----------
        distances : np.ndarray
            Array of distances [m], shape (N,)

        Returns:
        --------
        np.ndarray : Kernel values, shape (N,)
        '''
        q = np.asarray(distances, dtype=np.float64) / self._h
        result = np.zeros_like(q)

        inner = q < 0.5
        qInner = q[inner]
        result[inner] = self._k * (6.0 * qInner ** 3 - 6.0 * qInner ** 2 + 1.0)

        outer = (q >= 0.5) & (q < 1.0)
        oneMinusQ = 1.0 - q[outer]
        result[outer] = self._k * 2.0 * oneMinusQ ** 3

        return result

    def gradientBatch(self, drVecs: np.ndarray, distances: np.ndarray) -> np.ndarray:
        '''
        Evaluate kernel gradient vectors for an array of particle pairs.

        Parameters:
        -----------
        drVecs : np.ndarray
            Displacement vectors r_i - r_j, shape (N, dim)
        distances : np.ndarray
            Distances |dr|, shape (N,)

        Returns:
        --------
        np.ndarray : Gradient vectors, shape (N, dim)
        '''
        distances = np.asarray(distances, dtype=np.float64)
        q = distances / self._h

        # dW/dq per pair, zero outside (0, 1)
        dwdq = np.zeros_like(q)
        inner = (q >= ZERO_DISTANCE_RATIO) & (q < 0.5)
        dwdq[inner] = q[inner] * (3.0 * q[inner] - 2.0)
        outer = (q >= 0.5) & (q < 1.0)
        dwdq[outer] = -(1.0 - q[outer]) ** 2

        # Avoid division by zero
        safeDistances = np.where(q >= ZERO_DISTANCE_RATIO, distances, 1.0)
        scale = self._l * dwdq / (safeDistances * self._h)

        return scale[:, np.newaxis] * drVecs


######################################################################
# -- Kernel Factory -- #
######################################################################

def createKernel(kernelType: str, smoothingLength: float, dimensions: int = 3) -> SphKernel:
    '''
    Create a kernel instance by type name.

    Parameters:
    -----------
    kernelType : str
        Kernel type, only 'cubicSpline' is available
    smoothingLength : float
        Support radius h [m]
    dimensions : int
        Number of spatial dimensions (2 or 3)

    Returns:
    --------
    SphKernel : Kernel instance

    Raises:
    -------
    ValueError : If kernel type is unknown
    '''
    if kernelType == 'cubicSpline':
        return CubicSplineKernel(smoothingLength, dimensions)
    else:
        raise ValueError(f'Unknown kernel type: {kernelType}')
