# -- SPH Fluid Solver -- #

'''
Particle fluid solver with a pluggable pressure strategy.

Owns the fluid particles, the spatial hash over them, an optional static
boundary with its own hash, and the domain walls. Pressure handling is
delegated to a PressureStrategy (DFSPH by default, or the state
equation), selected at construction.

All inner loops are vectorized using NumPy: neighborhoods are flattened
into pair arrays once per sub-step and every pass scatter-adds over them.

Algorithm per time step:
    1. Adaptive time step (CFL condition)
    2. Build neighborhoods, predict velocities from non-pressure forces
    3. Density correction (strategy)
    4. Integrate positions, reflect off the domain faces
    5. Rebuild the spatial hash
    6. Commit densities, refresh factors (strategy)
    7. Divergence correction (strategy)
    8. Commit velocities

References:
-----------
Bender & Koschier (2015) -- Divergence-Free Smoothed Particle Hydrodynamics
Ihmsen et al. (2014) -- SPH Fluids in Computer Graphics
'''

from __future__ import annotations

from typing import Iterator

import numpy as np

from FluidSim import constants as const
from FluidSim.sph.boundaryHandling import BoundaryWalls
from FluidSim.sph.kernels import SphKernel, createKernel
from FluidSim.sph.neighborhood import NeighborPairs
from FluidSim.sph.nonPressure import nonPressureAccelerations
from FluidSim.sph.particles import BoundaryParticles, FluidParticles, ParticleConstants
from FluidSim.sph.pressureSolvers import (
    CorrectionResult,
    PressureStrategy,
    StepPairs,
    createPressureSolver,
)
from FluidSim.sph.protocols import (
    ConvergenceError,
    ParticleSnapshot,
    SimulationConfig,
    SimulationState,
)
from FluidSim.sph.spatialHash import SpatialHashTable


class SphSolver:
    '''
    SPH fluid solver.

    Parameters:
    -----------
    config : SimulationConfig
        Simulation configuration; validated before anything is built
    strategy : PressureStrategy | None
        Pressure strategy (defaults to the one named by
        config.pressureSolver)

    Raises:
    -------
    ConfigurationError : If the configuration is invalid
    '''

    def __init__(
        self,
        config: SimulationConfig,
        strategy: PressureStrategy | None = None,
    ) -> None:
        config.validate()

        self._config = config
        self._constants = ParticleConstants(
            radius=config.particleRadius,
            restDensity=config.restDensity,
            dimensions=config.dimensions,
        )
        self._kernel: SphKernel = createKernel(
            config.kernelType, config.smoothingLength, config.dimensions
        )

        self._fluid = FluidParticles(config.positions, config.velocities, self._constants)
        self._table = SpatialHashTable(self._fluid, self._kernel)

        self._boundary: BoundaryParticles | None = None
        self._boundaryTable: SpatialHashTable | None = None

        self._walls = BoundaryWalls(
            config.domainStart,
            config.domainEnd,
            spacing=config.smoothingLength,
            restitution=config.restitution,
            margin=0.5 * config.particleRadius,
        )

        self._strategy = strategy or createPressureSolver(config, self._kernel)

        self._time: float = 0.0
        self._step: int = 0
        self._dt: float = 0.0
        self._lastDensity = CorrectionResult()
        self._lastDivergence = CorrectionResult()

        self._strategy.initialize(self._fluid, self._gatherPairs())

    ######################################################################
    # -- Boundary -- #
    ######################################################################

    def setBoundary(self, positions: np.ndarray) -> None:
        '''
        Place static boundary particles.

        The boundary gets its own spatial hash, built once and never
        updated. Boundary particles share the fluid's particle constants.

        Parameters:
        -----------
        positions : np.ndarray
            Boundary particle positions [m], shape (M, dim)

        Raises:
        -------
        RuntimeError : If a boundary was already set
        ValueError : If the positions have the wrong shape
        '''
        if self._boundary is not None:
            raise RuntimeError('Boundary particles can only be set once')

        self._boundary = BoundaryParticles(positions, self._constants)
        self._boundaryTable = SpatialHashTable(self._boundary, self._kernel)

        self._strategy.initialize(self._fluid, self._gatherPairs())

    ######################################################################
    # -- Main Time Step -- #
    ######################################################################

    def step(self) -> SimulationState:
        '''
        Advance one adaptive time step.

        Returns:
        --------
        SimulationState : Diagnostics of the completed step

        Raises:
        -------
        ConvergenceError : If a correction loop hit its iteration cap and
            config.raiseOnNonConvergence is set
        '''
        fluid = self._fluid
        config = self._config

        # 1. Adaptive time step
        dt = self._computeTimeStep()
        self._dt = dt

        # 2. Neighborhoods and velocity prediction
        pairs = self._gatherPairs()
        accelerations = nonPressureAccelerations(
            fluid,
            pairs.fluid,
            self._kernel,
            config.gravity,
            viscosity=config.viscosity,
            surfaceTension=config.surfaceTension,
        )
        fluid.velocitiesFuture[:] = fluid.velocities + dt * accelerations

        # 3. Density correction
        self._lastDensity = self._strategy.correctDensity(fluid, pairs, dt)

        # 4. Integrate and keep particles inside the domain
        newPositions = fluid.positions + dt * fluid.velocitiesFuture
        self._walls.enforce(newPositions, fluid.velocitiesFuture)

        # 5. Rebuild the hash
        self._table.setPositions(newPositions)
        self._table.update()

        # 6. Commit density, refresh factors
        pairs = self._gatherPairs()
        self._strategy.refreshFactors(fluid, pairs)

        # 7. Divergence correction
        self._lastDivergence = self._strategy.correctDivergence(fluid, pairs, dt)

        # 8. Commit velocity
        fluid.velocities[:] = fluid.velocitiesFuture

        self._time += dt
        self._step += 1

        state = self.currentState
        if config.raiseOnNonConvergence and not state.converged:
            raise ConvergenceError(
                f'Step {state.step}: density correction '
                f'{"converged" if state.densityConverged else "did not converge"} '
                f'after {state.densityIterations} iterations '
                f'(error {state.averageDensityError:.4g}), divergence correction '
                f'{"converged" if state.divergenceConverged else "did not converge"} '
                f'after {state.divergenceIterations} iterations '
                f'(divergence {state.averageDivergence:.4g})'
            )

        return state

    def _computeTimeStep(self) -> float:
        '''
        dt = min(cflParameter * r / max(max|v|, cflMinSpeed), strategy limit)

        The strategy limit is the acoustic bound of the state equation,
        and unbounded for DFSPH.

        Returns:
        --------
        float : Time step [s]
        '''
        speed = max(self._fluid.maxSpeed(), const.cflMinSpeed)
        dtVelocity = self._config.cflParameter * self._config.particleRadius / speed
        return min(dtVelocity, self._strategy.timeStepLimit(self._fluid))

    def _gatherPairs(self) -> StepPairs:
        '''Neighbor pairs of the current positions (fluid and boundary).'''
        fluidPairs = self._table.neighborPairs()

        if self._boundaryTable is None:
            return StepPairs(
                fluid=fluidPairs,
                boundary=NeighborPairs.empty(len(self._fluid), self._config.dimensions),
            )

        return StepPairs(
            fluid=fluidPairs,
            boundary=self._boundaryTable.neighborPairsAt(self._fluid.positions),
            boundaryMass=self._constants.mass,
        )

    ######################################################################
    # -- Properties -- #
    ######################################################################

    @property
    def currentState(self) -> SimulationState:
        '''Current simulation state snapshot.'''
        density = self._lastDensity
        divergence = self._lastDivergence

        return SimulationState(
            time=self._time,
            step=self._step,
            dt=self._dt,
            densityIterations=density.iterations,
            densityConverged=density.converged,
            divergenceIterations=divergence.iterations,
            divergenceConverged=divergence.converged,
            initialDensityError=density.initialError,
            averageDensityError=density.finalError,
            initialDivergence=divergence.initialError,
            averageDivergence=divergence.finalError,
            maxVelocity=self._fluid.maxSpeed(),
            kineticEnergy=self._fluid.kineticEnergy(),
        )

    def particles(self) -> Iterator[ParticleSnapshot]:
        '''Snapshots of every fluid particle, ordered by id.'''
        fluid = self._fluid
        for i in range(len(fluid)):
            yield ParticleSnapshot(
                id=i,
                position=fluid.positions[i].copy(),
                velocity=fluid.velocities[i].copy(),
                density=float(fluid.densities[i]),
                pressure=float(fluid.pressures[i]),
            )

    @property
    def positions(self) -> np.ndarray:
        '''Copy of the fluid positions [m], shape (N, dim).'''
        return self._fluid.positions.copy()

    @property
    def fluid(self) -> FluidParticles:
        '''The fluid particle state.'''
        return self._fluid

    @property
    def boundary(self) -> BoundaryParticles | None:
        '''Static boundary particles, or None.'''
        return self._boundary

    @property
    def table(self) -> SpatialHashTable:
        '''Spatial hash over the fluid particles.'''
        return self._table

    @property
    def boundaryTable(self) -> SpatialHashTable | None:
        '''Spatial hash over the boundary particles, or None.'''
        return self._boundaryTable

    @property
    def kernel(self) -> SphKernel:
        '''Smoothing kernel.'''
        return self._kernel

    @property
    def strategy(self) -> PressureStrategy:
        '''Pressure strategy.'''
        return self._strategy

    @property
    def config(self) -> SimulationConfig:
        '''Simulation configuration.'''
        return self._config

    @property
    def time(self) -> float:
        '''Current simulation time [s].'''
        return self._time

    @property
    def dt(self) -> float:
        '''Size of the last time step [s].'''
        return self._dt
