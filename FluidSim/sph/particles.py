# -- SPH Particle Sets -- #

'''
Particle storage for fluid and boundary particles.

Particles are stored as contiguous NumPy arrays (struct of arrays) for
vectorized operations. A particle's id is its row index in every array
of its set, so identity and storage slot never drift apart. Per-particle
dataclasses (FluidParticle, BoundaryParticle) are read-only views built
on demand from those rows.

Every particle of one kind shares the same derived constants (mass,
volume, rest density, smoothing length), held by ParticleConstants.
'''

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np


######################################################################
# -- Shared Particle Constants -- #
######################################################################

@dataclass(frozen=True)
class ParticleConstants:
    '''
    Constants derived once from particle radius and rest density.

    Parameters:
    -----------
    radius : float
        Particle radius r [m]
    restDensity : float
        Rest density rho_0 [kg/m^3]
    dimensions : int
        Number of spatial dimensions (2 or 3)
    '''

    radius: float
    restDensity: float
    dimensions: int = 3

    @property
    def volume(self) -> float:
        '''
        Particle volume [m^dim].

        Sphere volume 4/3 * pi * r^3 in 3D, disc area pi * r^2 in 2D.
        '''
        if self.dimensions == 2:
            return math.pi * self.radius ** 2
        return 4.0 / 3.0 * math.pi * self.radius ** 3

    @property
    def mass(self) -> float:
        '''Particle mass m = volume * rho_0 [kg].'''
        return self.volume * self.restDensity

    @property
    def smoothingLength(self) -> float:
        '''Kernel support radius h = 2r [m].'''
        return 2.0 * self.radius


class ParticleSet(Protocol):
    '''Anything with positions and shared constants can be hashed.'''

    positions: np.ndarray
    constants: ParticleConstants

    def __len__(self) -> int:
        ...


######################################################################
# -- Per-Particle Views -- #
######################################################################

@dataclass(frozen=True)
class BoundaryParticle:
    '''Read-only view of one static boundary particle.'''

    id: int
    position: np.ndarray = field(repr=False)


@dataclass(frozen=True)
class FluidParticle:
    '''
    Read-only view of one fluid particle.

    Parameters:
    -----------
    id : int
        Particle id (row index in the owning FluidParticles)
    position : np.ndarray
        Position [m]
    velocity : np.ndarray
        Velocity [m/s]
    velocityFuture : np.ndarray
        Predicted velocity of the current step [m/s]
    density : float
        Density [kg/m^3]
    densityFuture : float
        Predicted density of the current step [kg/m^3]
    dsphFactor : float
        DFSPH stiffness factor
    pressure : float
        Pressure-like value of the last correction pass
    '''

    id: int
    position: np.ndarray = field(repr=False)
    velocity: np.ndarray = field(repr=False)
    velocityFuture: np.ndarray = field(repr=False)
    density: float
    densityFuture: float
    dsphFactor: float
    pressure: float


######################################################################
# -- Boundary Particles -- #
######################################################################

class BoundaryParticles:
    '''
    Static boundary particles: positions only, never moved.

    Parameters:
    -----------
    positions : np.ndarray
        Particle positions [m], shape (M, dim)
    constants : ParticleConstants
        Shared constants of the boundary particles
    '''

    def __init__(self, positions: np.ndarray, constants: ParticleConstants) -> None:
        self.positions = np.array(positions, dtype=np.float64)
        self.constants = constants

        if self.positions.ndim != 2 or self.positions.shape[1] != constants.dimensions:
            raise ValueError(
                f'Boundary positions must have shape (M, {constants.dimensions}), '
                f'got {self.positions.shape}'
            )

    def __len__(self) -> int:
        return self.positions.shape[0]

    def particle(self, particleId: int) -> BoundaryParticle:
        '''Read-only view of boundary particle particleId.'''
        return BoundaryParticle(id=particleId, position=self.positions[particleId].copy())


######################################################################
# -- Fluid Particles -- #
######################################################################

class FluidParticles:
    '''
    Fluid particle state.

    Vector quantities have shape (N, dim) and scalar quantities (N,).
    The particle count is fixed at construction.

    Parameters:
    -----------
    positions : np.ndarray
        Initial positions [m], shape (N, dim)
    velocities : np.ndarray
        Initial velocities [m/s], shape (N, dim)
    constants : ParticleConstants
        Shared constants of the fluid particles
    '''

    def __init__(
        self,
        positions: np.ndarray,
        velocities: np.ndarray,
        constants: ParticleConstants,
    ) -> None:
        self.positions = np.array(positions, dtype=np.float64)
        self.velocities = np.array(velocities, dtype=np.float64)
        self.constants = constants

        n = self.positions.shape[0]
        self.velocitiesFuture = self.velocities.copy()
        self.densities = np.full(n, constants.restDensity)
        self.densitiesFuture = np.full(n, constants.restDensity)
        self.dsphFactors = np.zeros(n)
        self.pressures = np.zeros(n)

    def __len__(self) -> int:
        return self.positions.shape[0]

    @property
    def dimensions(self) -> int:
        '''Number of spatial dimensions (2 or 3).'''
        return self.positions.shape[1]

    @property
    def mass(self) -> float:
        '''Mass shared by every fluid particle [kg].'''
        return self.constants.mass

    def particle(self, particleId: int) -> FluidParticle:
        '''Read-only view of fluid particle particleId.'''
        return FluidParticle(
            id=particleId,
            position=self.positions[particleId].copy(),
            velocity=self.velocities[particleId].copy(),
            velocityFuture=self.velocitiesFuture[particleId].copy(),
            density=float(self.densities[particleId]),
            densityFuture=float(self.densitiesFuture[particleId]),
            dsphFactor=float(self.dsphFactors[particleId]),
            pressure=float(self.pressures[particleId]),
        )

    def maxSpeed(self) -> float:
        '''
        Maximum velocity magnitude.

        Returns:
        --------
        float : Maximum speed [m/s]
        '''
        if len(self) == 0:
            return 0.0
        return float(np.max(np.linalg.norm(self.velocities, axis=1)))

    def kineticEnergy(self) -> float:
        '''
        Total kinetic energy.

        KE = (1/2) * sum_i m * |v_i|^2

        Returns:
        --------
        float : Kinetic energy [J]
        '''
        speedsSq = np.sum(self.velocities * self.velocities, axis=1)
        return float(0.5 * self.mass * np.sum(speedsSq))

    def averageDensity(self) -> float:
        '''Mean committed density [kg/m^3].'''
        if len(self) == 0:
            return self.constants.restDensity
        return float(np.mean(self.densities))
