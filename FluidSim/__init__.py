# -- FluidSim Package -- #

'''
Incompressible fluid simulation using Divergence-Free Smoothed Particle
Hydrodynamics (DFSPH).

Rebuildable spatial hashing, cubic spline kernels, and a particle solver
with pluggable pressure strategies, exercised through dam-break scenarios.
'''

__version__ = '0.1.0'

from FluidSim.sph.protocols import SimulationConfig, SimulationState, ParticleSnapshot
from FluidSim.sph.solver import SphSolver
from FluidSim.scenarios.damBreak import DamBreakConfig, createDamBreak
