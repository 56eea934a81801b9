# -- SPH Engine Package -- #

'''
Core Smoothed Particle Hydrodynamics (SPH) engine.

Provides kernel functions, particle storage, the spatial hash with
neighborhoods, non-pressure forces, pressure strategies, boundary
handling, and the solver.
'''

from FluidSim.sph.protocols import (
    ConfigurationError,
    ConvergenceError,
    ParticleSnapshot,
    SimulationConfig,
    SimulationState,
)
from FluidSim.sph.kernels import CubicSplineKernel, createKernel
from FluidSim.sph.particles import BoundaryParticles, FluidParticles, ParticleConstants
from FluidSim.sph.neighborhood import Neighborhood, NeighborPairs
from FluidSim.sph.spatialHash import SpatialHashTable
from FluidSim.sph.pressureSolvers import (
    DivergenceFreePressure,
    StateEquationPressure,
    createPressureSolver,
)
from FluidSim.sph.boundaryHandling import BoundaryWalls
from FluidSim.sph.solver import SphSolver
