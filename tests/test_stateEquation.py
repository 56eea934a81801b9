# -- State Equation Pressure Tests -- #

'''
Weakly compressible pressure strategy and strategy selection.
'''

import math

import numpy as np
import pytest

from FluidSim.sph.kernels import CubicSplineKernel
from FluidSim.sph.neighborhood import NeighborPairs
from FluidSim.sph.particles import FluidParticles, ParticleConstants
from FluidSim.sph.pressureSolvers import (
    DivergenceFreePressure,
    StateEquationPressure,
    StepPairs,
    createPressureSolver,
)
from FluidSim.sph.protocols import ConfigurationError, SimulationConfig
from FluidSim.sph.solver import SphSolver
from FluidSim.sph.spatialHash import SpatialHashTable


def pairConfig(separation: float, **overrides) -> SimulationConfig:
    settings = dict(
        domainStart=[-1.0, -1.0, -1.0],
        domainEnd=[1.0, 1.0, 1.0],
        particleRadius=0.05,
        restDensity=1000.0,
        positions=[[0.0, 0.0, 0.0], [separation, 0.0, 0.0]],
        gravity=[0.0, 0.0, 0.0],
        pressureSolver='stateEquation',
    )
    settings.update(overrides)
    return SimulationConfig(**settings)


def approachingPairConfig(**overrides) -> SimulationConfig:
    '''Pair half a smoothing length apart, closing at 2 m/s.'''
    return pairConfig(0.05, velocities=[[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0]], **overrides)


def testSpeedOfSound():
    kernel = CubicSplineKernel(0.1, 3)
    strategy = StateEquationPressure(kernel, restDensity=1000.0, stiffness=50000.0, exponent=7.0)
    assert strategy.speedOfSound == pytest.approx(math.sqrt(350.0))


def testContinuityDensity():
    constants = ParticleConstants(radius=0.05, restDensity=1000.0, dimensions=3)
    kernel = CubicSplineKernel(constants.smoothingLength, 3)
    fluid = FluidParticles(
        np.array([[0.0, 0.0, 0.0], [0.05, 0.0, 0.0]]),
        np.array([[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0]]),
        constants,
    )
    fluid.velocitiesFuture[:] = fluid.velocities
    pairs = StepPairs(
        fluid=SpatialHashTable(fluid, kernel).neighborPairs(),
        boundary=NeighborPairs.empty(2, 3),
    )
    strategy = StateEquationPressure(kernel, restDensity=1000.0)
    dt = 0.002

    densities = strategy.predictedDensities(fluid, pairs, dt)

    # d rho / dt = m (v_i - v_j) . grad_W_ij, the same for both particles
    gradient = np.linalg.norm(kernel.gradient(np.array([0.05, 0.0, 0.0])))
    expected = 1000.0 + dt * constants.mass * 2.0 * gradient
    np.testing.assert_allclose(densities, [expected, expected])


def testIsolatedParticleKeepsItsDensity():
    constants = ParticleConstants(radius=0.05, restDensity=1000.0, dimensions=3)
    kernel = CubicSplineKernel(constants.smoothingLength, 3)
    fluid = FluidParticles(np.zeros((1, 3)), np.array([[3.0, 0.0, 0.0]]), constants)
    fluid.velocitiesFuture[:] = fluid.velocities
    strategy = StateEquationPressure(kernel, restDensity=1000.0)

    pairs = StepPairs(fluid=NeighborPairs.empty(1, 3), boundary=NeighborPairs.empty(1, 3))

    assert strategy.predictedDensities(fluid, pairs, 0.01)[0] == pytest.approx(1000.0)


def testPressureClampedAtZero():
    kernel = CubicSplineKernel(0.1, 3)
    strategy = StateEquationPressure(kernel, restDensity=1000.0, stiffness=1000.0, exponent=7.0)

    pressures = strategy.pressuresOf(np.array([500.0, 1000.0, 1100.0]))

    assert pressures[0] == 0.0
    assert pressures[1] == pytest.approx(0.0)
    assert pressures[2] == pytest.approx(1000.0 * (1.1 ** 7 - 1.0))


def testTimeStepBoundedBySpeedOfSound():
    solver = SphSolver(pairConfig(0.05))
    state = solver.step()

    assert state.dt == pytest.approx(0.4 * 0.1 / math.sqrt(350.0))
    assert state.dt < 0.4 * 0.05 / 1.0


def testSinglePassAndNoDivergenceLoop():
    solver = SphSolver(pairConfig(0.05))
    assert isinstance(solver.strategy, StateEquationPressure)

    state = solver.step()
    assert state.densityIterations == 1
    assert state.divergenceIterations == 0
    assert state.converged


def testPairAtRestStaysAtRest():
    solver = SphSolver(pairConfig(0.05))
    for _ in range(10):
        solver.step()

    np.testing.assert_array_equal(solver.fluid.velocities, 0.0)
    np.testing.assert_allclose(solver.fluid.densities, 1000.0)


def testApproachingPairRepels():
    solver = SphSolver(approachingPairConfig())
    state = solver.step()
    velocities = solver.fluid.velocities

    assert state.initialDensityError > 0.0
    assert velocities[0, 0] < 0.0
    assert velocities[1, 0] > 0.0
    assert velocities[0, 0] + velocities[1, 0] == pytest.approx(0.0, abs=1e-9)
    assert solver.fluid.maxSpeed() < 5.0


def testApproachingPairStaysBounded():
    config = approachingPairConfig()
    solver = SphSolver(config)
    for _ in range(40):
        solver.step()

    positions = solver.positions
    assert np.all(np.isfinite(positions))
    assert solver.fluid.maxSpeed() < 5.0
    assert positions[1, 0] > positions[0, 0]
    assert np.all(np.abs(positions) < 0.5)


def testDensitiesCommittedEachStep():
    solver = SphSolver(approachingPairConfig())
    solver.step()
    np.testing.assert_allclose(solver.fluid.densities, solver.fluid.densitiesFuture)
    assert np.all(solver.fluid.densities > 1000.0)


def testCreatePressureSolver():
    kernel = CubicSplineKernel(0.1, 3)

    assert isinstance(createPressureSolver(pairConfig(0.05), kernel), StateEquationPressure)
    assert isinstance(
        createPressureSolver(pairConfig(0.05, pressureSolver='divergenceFree'), kernel),
        DivergenceFreePressure,
    )

    with pytest.raises(ConfigurationError):
        createPressureSolver(pairConfig(0.05, pressureSolver='pcisph'), kernel)


def testExplicitStrategyOverridesConfig():
    config = pairConfig(0.05, pressureSolver='divergenceFree')
    kernel = CubicSplineKernel(config.smoothingLength, 3)
    strategy = StateEquationPressure(kernel)

    solver = SphSolver(config, strategy=strategy)
    assert solver.strategy is strategy
