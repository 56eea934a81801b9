# -- Non-Pressure Accelerations -- #

'''
Accelerations applied before the pressure solve: gravity, viscosity and
surface tension (cohesion).

Each term is a sum over fluid neighbor pairs, vectorized over the
flattened pair arrays and scatter-added onto the query particle.

Viscosity (Monaghan-style laminar term):
    a_i += 2 * (d + 2) * nu * sum_j (m_j / rho_j) * (v_ij . r_ij)
           / (|r_ij|^2 + 0.01 * h^2) * grad_W_ij

Cohesion (Becker & Teschner):
    a_i -= (sigma / m_i) * sum_j m_j * r_ij * W(max(|r_ij|, r))

References:
-----------
Monaghan (2005) -- Smoothed particle hydrodynamics
Becker & Teschner (2007) -- Weakly compressible SPH for free surface flows
'''

from __future__ import annotations

import numpy as np

from FluidSim.sph.kernels import SphKernel
from FluidSim.sph.neighborhood import NeighborPairs
from FluidSim.sph.particles import FluidParticles


def viscosityAcceleration(
    fluid: FluidParticles,
    pairs: NeighborPairs,
    kernel: SphKernel,
    viscosity: float,
) -> np.ndarray:
    '''
    Laminar viscosity acceleration of every fluid particle.

    Parameters:
    -----------
    fluid : FluidParticles
        Fluid particle state (velocities and densities are read)
    pairs : NeighborPairs
        Fluid-fluid neighbor pairs of the current positions
    kernel : SphKernel
        Smoothing kernel
    viscosity : float
        Viscosity coefficient nu

    Returns:
    --------
    np.ndarray : Accelerations [m/s^2], shape (N, dim)
    '''
    if viscosity == 0.0 or pairs.nPairs == 0:
        return np.zeros_like(fluid.velocities)

    h = kernel.smoothingLength
    iIdx, jIdx = pairs.iIdx, pairs.jIdx

    dv = fluid.velocities[iIdx] - fluid.velocities[jIdx]
    vDotR = np.sum(dv * pairs.displacements, axis=1)

    coeff = (
        2.0 * (fluid.dimensions + 2) * viscosity
        * (fluid.mass / fluid.densities[jIdx])
        * vDotR / (pairs.distances ** 2 + 0.01 * h * h)
    )
    return pairs.sumPerParticle(coeff[:, np.newaxis] * pairs.gradients)


def surfaceTensionAcceleration(
    fluid: FluidParticles,
    pairs: NeighborPairs,
    kernel: SphKernel,
    surfaceTension: float,
) -> np.ndarray:
    '''
    Cohesion acceleration pulling neighbors together.

    Distances below one particle radius are clamped to the radius, so
    nearly overlapping pairs do not get the peak kernel weight.

    Parameters:
    -----------
    fluid : FluidParticles
        Fluid particle state
    pairs : NeighborPairs
        Fluid-fluid neighbor pairs of the current positions
    kernel : SphKernel
        Smoothing kernel
    surfaceTension : float
        Surface tension coefficient sigma

    Returns:
    --------
    np.ndarray : Accelerations [m/s^2], shape (N, dim)
    '''
    if surfaceTension == 0.0 or pairs.nPairs == 0:
        return np.zeros_like(fluid.velocities)

    # Every fluid particle has the same mass, so m_j / m_i = 1
    radius = fluid.constants.radius
    weights = kernel.evaluateBatch(np.maximum(pairs.distances, radius))
    contrib = -surfaceTension * weights[:, np.newaxis] * pairs.displacements
    return pairs.sumPerParticle(contrib)


def nonPressureAccelerations(
    fluid: FluidParticles,
    pairs: NeighborPairs,
    kernel: SphKernel,
    gravity: np.ndarray,
    viscosity: float = 0.0,
    surfaceTension: float = 0.0,
) -> np.ndarray:
    '''
    Total non-pressure acceleration: gravity + viscosity + cohesion.

    Parameters:
    -----------
    fluid : FluidParticles
        Fluid particle state
    pairs : NeighborPairs
        Fluid-fluid neighbor pairs of the current positions
    kernel : SphKernel
        Smoothing kernel
    gravity : np.ndarray
        Gravity vector [m/s^2], shape (dim,)
    viscosity : float
        Viscosity coefficient (0 disables)
    surfaceTension : float
        Surface tension coefficient (0 disables)

    Returns:
    --------
    np.ndarray : Accelerations [m/s^2], shape (N, dim)
    '''
    accelerations = np.tile(np.asarray(gravity, dtype=np.float64), (len(fluid), 1))
    accelerations += viscosityAcceleration(fluid, pairs, kernel, viscosity)
    accelerations += surfaceTensionAcceleration(fluid, pairs, kernel, surfaceTension)
    return accelerations
