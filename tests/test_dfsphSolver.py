# -- DFSPH Solver Tests -- #

'''
End-to-end behaviour of SphSolver with the divergence-free pressure
strategy: conservation, rest states, the approaching pair, convergence
reporting, and boundary coupling.
'''

import math

import numpy as np
import pytest

from FluidSim.sph.boundaryHandling import BoundaryWalls
from FluidSim.sph.pressureSolvers import DivergenceFreePressure
from FluidSim.sph.protocols import (
    ConfigurationError,
    ConvergenceError,
    SimulationConfig,
    latticePositions,
)
from FluidSim.sph.solver import SphSolver


def approachingPairConfig(**overrides) -> SimulationConfig:
    '''Two particles one smoothing length apart, A moving toward B at 1 m/s.'''
    r = 0.05
    settings = dict(
        domainStart=[-1.0, -1.0, -1.0],
        domainEnd=[1.0, 1.0, 1.0],
        particleRadius=r,
        restDensity=1000.0,
        positions=[[0.0, 0.0, 0.0], [2.0 * r, 0.0, 0.0]],
        velocities=[[1.0, 0.0, 0.0], [0.0, 0.0, 0.0]],
        gravity=[0.0, 0.0, 0.0],
    )
    settings.update(overrides)
    return SimulationConfig(**settings)


def blockConfig(**overrides) -> SimulationConfig:
    r = 0.01
    settings = dict(
        domainStart=[0.0, 0.0],
        domainEnd=[0.2, 0.2],
        particleRadius=r,
        restDensity=1000.0,
        positions=latticePositions(np.array([0.0, 0.0]), np.array([0.1, 0.1]), r),
    )
    settings.update(overrides)
    return SimulationConfig(**settings)


######################################################################
# -- Construction -- #
######################################################################

def testInvalidConfigRejectedAtConstruction():
    with pytest.raises(ConfigurationError):
        SphSolver(approachingPairConfig(velocities=[[1.0, 0.0, 0.0]]))


def testDefaultStrategyIsDivergenceFree():
    solver = SphSolver(approachingPairConfig())
    assert isinstance(solver.strategy, DivergenceFreePressure)


def testInitialState():
    solver = SphSolver(approachingPairConfig())
    state = solver.currentState
    assert state.step == 0
    assert state.time == 0.0
    assert state.maxVelocity == pytest.approx(1.0)


def testSetBoundaryOnlyOnce():
    solver = SphSolver(approachingPairConfig())
    solver.setBoundary(np.array([[0.0, -0.5, 0.0]]))
    assert solver.boundaryTable is not None

    with pytest.raises(RuntimeError):
        solver.setBoundary(np.array([[0.0, -0.5, 0.0]]))


######################################################################
# -- Time Stepping -- #
######################################################################

def testTimeStepFollowsCfl():
    solver = SphSolver(approachingPairConfig(velocities=[[0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]))
    state = solver.step()
    assert state.dt == pytest.approx(0.4 * 0.05 / 1.0)

    fast = SphSolver(approachingPairConfig(velocities=[[4.0, 0.0, 0.0], [0.0, 0.0, 0.0]]))
    assert fast.step().dt == pytest.approx(0.4 * 0.05 / 4.0)


def testIsolatedParticleFallsFreely():
    config = SimulationConfig(
        domainStart=[-1.0, -1.0],
        domainEnd=[1.0, 1.0],
        particleRadius=0.01,
        restDensity=1000.0,
        positions=[[0.0, 0.0]],
    )
    solver = SphSolver(config)
    state = solver.step()

    np.testing.assert_allclose(solver.fluid.velocities[0], [0.0, -9.81 * state.dt])
    np.testing.assert_allclose(solver.positions[0], [0.0, -9.81 * state.dt ** 2])
    assert solver.time == pytest.approx(state.dt)


def testParticleCountConserved():
    solver = SphSolver(blockConfig())
    nParticles = len(list(solver.particles()))
    assert nParticles == 100

    for _ in range(15):
        solver.step()
        assert len(list(solver.particles())) == nParticles
        solver.table.checkInvariants()


def testParticlesStayInsideDomain():
    config = blockConfig()
    solver = SphSolver(config)
    for _ in range(30):
        solver.step()

    positions = solver.positions
    r = config.particleRadius
    assert np.all(positions >= config.domainStart + 0.5 * r - 1e-12)
    assert np.all(positions <= config.domainEnd - 0.5 * r + 1e-12)


def testIterationCountsRespectBounds():
    solver = SphSolver(blockConfig(maxDensityIterations=5, maxDivergenceIterations=4))
    for _ in range(20):
        state = solver.step()
        assert 2 <= state.densityIterations <= 5
        assert 1 <= state.divergenceIterations <= 4


def testHydrostaticColumnHoldsUnderGravity():
    r = 0.01
    config = SimulationConfig(
        domainStart=[0.0, 0.0],
        domainEnd=[0.1, 0.1],
        particleRadius=r,
        restDensity=1000.0,
        positions=latticePositions(np.array([0.0, 0.0]), np.array([0.1, 0.1]), r),
    )
    solver = SphSolver(config)
    walls = BoundaryWalls(config.domainStart, config.domainEnd, spacing=r, nLayers=2, openTop=True)
    solver.setBoundary(walls.generatePositions())

    initialTop = solver.positions[:, 1].max()
    for _ in range(50):
        solver.step()

    positions = solver.positions
    densities = solver.fluid.densities
    assert np.all(np.isfinite(positions))
    assert np.all(np.isfinite(densities))

    # Unsupported, the column would be falling at about 2 m/s by now
    assert solver.time > 0.15
    assert solver.fluid.maxSpeed() < 0.5
    assert positions[:, 1].max() > 0.7 * initialTop
    assert abs(np.mean(densities) - 1000.0) < 0.03 * 1000.0

    assert np.all(positions >= config.domainStart + 0.5 * r - 1e-12)
    assert np.all(positions <= config.domainEnd - 0.5 * r + 1e-12)


######################################################################
# -- Approaching Pair -- #
######################################################################

def testApproachingPair():
    config = approachingPairConfig()
    solver = SphSolver(config)
    h = config.smoothingLength

    # At exactly h the pair lies on the edge of the support
    assert solver.kernel.evaluate(h) == 0.0

    state = solver.step()
    fluid = solver.fluid

    # After the move the pair is inside the support and both factors are live
    assert np.all(np.isfinite(fluid.dsphFactors))
    assert np.all(fluid.dsphFactors > 0.0)
    assert fluid.dsphFactors[0] == pytest.approx(fluid.dsphFactors[1])

    # The density pass saw no neighbors, the divergence pass saw compression
    assert fluid.densitiesFuture[0] == pytest.approx(config.restDensity)
    assert state.initialDivergence > 0.0

    # The divergence correction slows A and pushes B, conserving momentum
    assert fluid.velocities[0, 0] < 1.0
    assert fluid.velocities[1, 0] > 0.0
    assert fluid.velocities[0, 0] + fluid.velocities[1, 0] == pytest.approx(1.0)


def testApproachingPairSeparatesAfterExchange():
    # The correction of an isolated pair is an elastic exchange: A stops
    # and B carries the momentum away, so the next step sees no compression
    solver = SphSolver(approachingPairConfig())
    solver.step()
    state = solver.step()

    assert state.densityIterations >= 2
    assert state.initialDensityError <= 0.0
    assert math.isfinite(state.averageDensityError)
    np.testing.assert_allclose(
        solver.fluid.velocities, [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]], atol=1e-9
    )


def testPairInsideSupportCompressesDensity():
    config = approachingPairConfig(positions=[[0.0, 0.0, 0.0], [0.08, 0.0, 0.0]])
    solver = SphSolver(config)
    fluid = solver.fluid
    assert np.all(fluid.dsphFactors > 0.0)

    state = solver.step()

    # A closing on B raises the predicted density above rest before the
    # correction, which then removes the compression
    assert state.initialDensityError > 0.0
    assert state.averageDensityError <= state.initialDensityError
    assert state.densityIterations >= 2
    assert state.densityConverged

    assert fluid.velocities[0, 0] < 1.0
    assert fluid.velocities[1, 0] > 0.0
    assert fluid.velocities[0, 0] + fluid.velocities[1, 0] == pytest.approx(1.0)
    assert fluid.maxSpeed() <= 1.0 + 1e-9


def testNearSupportEdgePairGetsZeroFactor():
    config = approachingPairConfig()
    h = config.smoothingLength
    solver = SphSolver(approachingPairConfig(
        positions=[[0.0, 0.0, 0.0], [h * (1.0 - 1e-12), 0.0, 0.0]],
    ))

    # A roundoff-sized gradient must not produce a huge factor
    np.testing.assert_array_equal(solver.fluid.dsphFactors, 0.0)

    for _ in range(3):
        solver.step()

    assert np.all(np.isfinite(solver.fluid.velocities))
    assert solver.fluid.maxSpeed() <= 1.0 + 1e-9


######################################################################
# -- Convergence Reporting -- #
######################################################################

def testNonConvergenceIsReported():
    solver = SphSolver(approachingPairConfig(maxDivergenceIterations=1, divergenceThreshold=1e-12))
    state = solver.step()

    assert state.divergenceIterations == 1
    assert not state.divergenceConverged
    assert not state.converged


def testNonConvergenceRaisesWhenRequested():
    solver = SphSolver(approachingPairConfig(
        maxDivergenceIterations=1,
        divergenceThreshold=1e-12,
        raiseOnNonConvergence=True,
    ))
    with pytest.raises(ConvergenceError):
        solver.step()


######################################################################
# -- Snapshots -- #
######################################################################

def testParticleSnapshotsAreOrderedCopies():
    solver = SphSolver(approachingPairConfig())
    snapshots = list(solver.particles())

    assert [s.id for s in snapshots] == [0, 1]
    snapshots[0].position[0] = 99.0
    assert solver.positions[0, 0] == 0.0


######################################################################
# -- Boundary Coupling -- #
######################################################################

def stackedPairConfig() -> SimulationConfig:
    '''Two particles stacked above a floor, both falling at 1 m/s.'''
    return SimulationConfig(
        domainStart=[-1.0, -1.0],
        domainEnd=[1.0, 1.0],
        particleRadius=0.01,
        restDensity=1000.0,
        positions=[[0.0, 0.01], [0.0, 0.026]],
        velocities=[[0.0, -1.0], [0.0, -1.0]],
        gravity=[0.0, 0.0],
    )


def testWithoutBoundaryUniformMotionIsUnchanged():
    solver = SphSolver(stackedPairConfig())
    solver.step()
    np.testing.assert_allclose(solver.fluid.velocities, [[0.0, -1.0], [0.0, -1.0]])


def testBoundaryPushesFallingFluidBack():
    solver = SphSolver(stackedPairConfig())
    floor = np.column_stack([np.linspace(-0.1, 0.1, 21), np.full(21, -0.005)])
    solver.setBoundary(floor)

    solver.step()
    velocities = solver.fluid.velocities

    assert velocities[1, 1] > -1.0
    assert np.mean(velocities[:, 1]) > -1.0
    np.testing.assert_allclose(velocities[:, 0], 0.0, atol=1e-12)
