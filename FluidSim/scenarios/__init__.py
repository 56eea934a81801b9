# -- Simulation Scenarios Package -- #

'''
Pre-configured simulation scenarios for SPH fluid simulation.

Each scenario provides initial conditions (particle layout, boundary
geometry) and configuration for a specific problem.
'''

from FluidSim.scenarios.damBreak import DamBreakConfig, createDamBreak
