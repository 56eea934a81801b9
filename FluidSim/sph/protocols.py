# -- SPH Simulation Protocols -- #

'''
Configuration, state snapshots, errors, and the solver protocol.

Defines the core data structures (SimulationConfig, SimulationState,
ParticleSnapshot) shared by the solver and its collaborators. A renderer
or recorder only ever sees these types: it hands a SimulationConfig to
the solver and reads ParticleSnapshots back after each step.
'''

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterator, Protocol

import numpy as np

from FluidSim import constants as const


######################################################################
# -- Errors -- #
######################################################################

class ConfigurationError(ValueError):
    '''Raised when a SimulationConfig cannot describe a valid simulation.'''


class ConvergenceError(RuntimeError):
    '''Raised when a correction loop hits its iteration cap (opt-in).'''


PRESSURE_SOLVERS = ('divergenceFree', 'stateEquation')


def defaultGravity(dimensions: int) -> np.ndarray:
    '''
    Gravity vector pointing down the y axis.

    The y axis is vertical in both 2D and 3D, matching the
    renderer's y-up convention.
    '''
    gravityVec = np.zeros(dimensions)
    if dimensions > 1:
        gravityVec[1] = -const.gravity
    return gravityVec


######################################################################
# -- Simulation Configuration -- #
######################################################################

@dataclass
class SimulationConfig:
    '''
    Configuration for a fluid simulation.

    Describes the domain, the particle kind, the initial particle
    state, and the numerical parameters of the pressure solver.
    All values in SI units.

    Parameters:
    -----------
    domainStart : np.ndarray
        Lower corner of the simulation domain [m]
    domainEnd : np.ndarray
        Upper corner of the simulation domain [m]
    particleRadius : float
        Particle radius r [m]; the smoothing length is h = 2r
    restDensity : float
        Rest density rho_0 [kg/m^3]
    positions : np.ndarray
        Initial particle positions [m], shape (N, dim)
    velocities : np.ndarray | None
        Initial particle velocities [m/s], shape (N, dim). Zero if None.
    gravity : np.ndarray | None
        Gravity vector [m/s^2]. Defaults to -9.81 along y.
    cflParameter : float
        dt = cflParameter * r / max(max|v|, 1); the state equation also
        bounds dt by cflParameter * h / (c + max|v|)
    densityThreshold : float
        Density solver tolerance on mean(rho*) - rho_0 [kg/m^3]
    divergenceThreshold : float
        Divergence solver tolerance on mean(d rho / dt) [kg/(m^3 s)]
    maxDensityIterations : int
        Iteration cap of the density solver
    maxDivergenceIterations : int
        Iteration cap of the divergence solver
    viscosity : float
        Viscosity coefficient (0 disables)
    surfaceTension : float
        Surface tension coefficient (0 disables)
    restitution : float
        Restitution coefficient for domain-face reflection, in [0, 1]
    pressureSolver : str
        'divergenceFree' (DFSPH) or 'stateEquation'
    stiffness : float
        State equation stiffness [Pa]
    stateExponent : float
        State equation exponent gamma
    kernelType : str
        Smoothing kernel name, only 'cubicSpline' is available
    raiseOnNonConvergence : bool
        Raise ConvergenceError when a correction loop hits its cap
    '''

    domainStart: np.ndarray
    domainEnd: np.ndarray
    particleRadius: float
    restDensity: float
    positions: np.ndarray
    velocities: np.ndarray | None = None
    gravity: np.ndarray | None = None
    cflParameter: float = const.cflParameter
    densityThreshold: float = const.densityThreshold
    divergenceThreshold: float = const.divergenceThreshold
    maxDensityIterations: int = const.maxDensityIterations
    maxDivergenceIterations: int = const.maxDivergenceIterations
    viscosity: float = const.viscosity
    surfaceTension: float = const.surfaceTension
    restitution: float = const.restitution
    pressureSolver: str = 'divergenceFree'
    stiffness: float = const.stiffness
    stateExponent: float = const.stateExponent
    kernelType: str = 'cubicSpline'
    raiseOnNonConvergence: bool = False

    def __post_init__(self) -> None:
        self.domainStart = np.asarray(self.domainStart, dtype=np.float64)
        self.domainEnd = np.asarray(self.domainEnd, dtype=np.float64)
        self.positions = np.asarray(self.positions, dtype=np.float64)

        if self.velocities is None:
            self.velocities = np.zeros_like(self.positions)
        else:
            self.velocities = np.asarray(self.velocities, dtype=np.float64)

        if self.gravity is None:
            self.gravity = defaultGravity(len(self.domainStart))
        else:
            self.gravity = np.asarray(self.gravity, dtype=np.float64)

    @property
    def smoothingLength(self) -> float:
        '''Smoothing length h = 2r [m], also the hash cell size.'''
        return 2.0 * self.particleRadius

    @property
    def dimensions(self) -> int:
        '''Number of spatial dimensions (2 or 3).'''
        return len(self.domainStart)

    @property
    def particleCount(self) -> int:
        '''Number of fluid particles.'''
        return len(self.positions)

    @property
    def domainSize(self) -> np.ndarray:
        '''Domain extent in each dimension [m].'''
        return self.domainEnd - self.domainStart

    def validate(self) -> None:
        '''
        Check the configuration before any simulation step runs.

        Raises:
        -------
        ConfigurationError : On any inconsistent or non-physical value
        '''
        dim = self.dimensions
        if dim not in (2, 3):
            raise ConfigurationError(f'Domain must be 2D or 3D, got {dim} components')
        if self.domainEnd.shape != (dim,):
            raise ConfigurationError(
                f'domainEnd has shape {self.domainEnd.shape}, expected ({dim},)'
            )
        if np.any(self.domainEnd <= self.domainStart):
            raise ConfigurationError('domainEnd must exceed domainStart on every axis')

        if not self.particleRadius > 0.0:
            raise ConfigurationError(f'particleRadius must be positive, got {self.particleRadius}')
        if not self.restDensity > 0.0:
            raise ConfigurationError(f'restDensity must be positive, got {self.restDensity}')

        if self.positions.ndim != 2 or self.positions.shape[1] != dim:
            raise ConfigurationError(
                f'positions must have shape (N, {dim}), got {self.positions.shape}'
            )
        if self.velocities.shape != self.positions.shape:
            raise ConfigurationError(
                f'velocities {self.velocities.shape} and positions '
                f'{self.positions.shape} must have equal length and dimension'
            )
        if not (np.all(np.isfinite(self.positions)) and np.all(np.isfinite(self.velocities))):
            raise ConfigurationError('positions and velocities must be finite')
        if self.gravity.shape != (dim,):
            raise ConfigurationError(f'gravity must have shape ({dim},), got {self.gravity.shape}')

        if not self.cflParameter > 0.0:
            raise ConfigurationError(f'cflParameter must be positive, got {self.cflParameter}')
        if not self.densityThreshold > 0.0:
            raise ConfigurationError('densityThreshold must be positive')
        if not self.divergenceThreshold > 0.0:
            raise ConfigurationError('divergenceThreshold must be positive')
        if self.maxDensityIterations < const.minDensityIterations:
            raise ConfigurationError(
                f'maxDensityIterations must be at least {const.minDensityIterations}'
            )
        if self.maxDivergenceIterations < const.minDivergenceIterations:
            raise ConfigurationError(
                f'maxDivergenceIterations must be at least {const.minDivergenceIterations}'
            )

        if self.viscosity < 0.0:
            raise ConfigurationError('viscosity must be non-negative')
        if self.surfaceTension < 0.0:
            raise ConfigurationError('surfaceTension must be non-negative')
        if not 0.0 <= self.restitution <= 1.0:
            raise ConfigurationError(f'restitution must lie in [0, 1], got {self.restitution}')

        if self.pressureSolver not in PRESSURE_SOLVERS:
            raise ConfigurationError(
                f'Unknown pressure solver: {self.pressureSolver} '
                f'(expected one of {", ".join(PRESSURE_SOLVERS)})'
            )
        if not self.stiffness > 0.0:
            raise ConfigurationError('stiffness must be positive')
        if not self.stateExponent >= 1.0:
            raise ConfigurationError('stateExponent must be at least 1')

    @classmethod
    def fromJson(cls, configPath: str) -> SimulationConfig:
        '''
        Load configuration from a JSON file.

        Reads the 'domain', 'fluid', 'solver', and 'particles' sections.
        Particles are either listed explicitly ('positions' and optional
        'velocities') or generated from a 'block' with 'min' and 'max'
        corners, filled on a lattice of spacing r (half the smoothing length).

        Parameters:
        -----------
        configPath : str
            Path to the JSON configuration file

        Returns:
        --------
        SimulationConfig : Loaded and validated configuration
        '''
        with open(configPath, 'r') as f:
            data = json.load(f)

        domainSection = data.get('domain', {})
        fluidSection = data.get('fluid', {})
        solverSection = data.get('solver', {})
        particleSection = data.get('particles', {})

        if 'start' not in domainSection or 'end' not in domainSection:
            raise ConfigurationError("The 'domain' section needs 'start' and 'end'")

        domainStart = np.asarray(domainSection['start'], dtype=np.float64)
        domainEnd = np.asarray(domainSection['end'], dtype=np.float64)
        particleRadius = fluidSection.get('particleRadius', const.particleRadius)

        if 'block' in particleSection:
            block = particleSection['block']
            positions = latticePositions(
                np.asarray(block['min'], dtype=np.float64),
                np.asarray(block['max'], dtype=np.float64),
                particleRadius,
            )
            velocities = None
        elif 'positions' in particleSection:
            positions = particleSection['positions']
            velocities = particleSection.get('velocities')
        else:
            raise ConfigurationError(
                "The 'particles' section needs 'positions' or a 'block'"
            )

        gravity = fluidSection.get('gravity')

        config = cls(
            domainStart=domainStart,
            domainEnd=domainEnd,
            particleRadius=particleRadius,
            restDensity=fluidSection.get('restDensity', const.restDensity),
            positions=positions,
            velocities=velocities,
            gravity=gravity,
            viscosity=fluidSection.get('viscosity', const.viscosity),
            surfaceTension=fluidSection.get('surfaceTension', const.surfaceTension),
            cflParameter=solverSection.get('cflParameter', const.cflParameter),
            densityThreshold=solverSection.get('densityThreshold', const.densityThreshold),
            divergenceThreshold=solverSection.get('divergenceThreshold', const.divergenceThreshold),
            maxDensityIterations=solverSection.get('maxDensityIterations', const.maxDensityIterations),
            maxDivergenceIterations=solverSection.get(
                'maxDivergenceIterations', const.maxDivergenceIterations
            ),
            restitution=solverSection.get('restitution', const.restitution),
            pressureSolver=solverSection.get('pressureSolver', 'divergenceFree'),
            stiffness=solverSection.get('stiffness', const.stiffness),
            stateExponent=solverSection.get('stateExponent', const.stateExponent),
            kernelType=solverSection.get('kernelType', 'cubicSpline'),
            raiseOnNonConvergence=solverSection.get('raiseOnNonConvergence', False),
        )
        config.validate()
        return config


def latticePositions(blockMin: np.ndarray, blockMax: np.ndarray, spacing: float) -> np.ndarray:
    '''
    Fill an axis-aligned block with particles on a regular lattice.

    Offset by half a spacing so particles sit inside the block.

    Parameters:
    -----------
    blockMin : np.ndarray
        Lower corner of the block [m]
    blockMax : np.ndarray
        Upper corner of the block [m]
    spacing : float
        Lattice spacing [m]

    Returns:
    --------
    np.ndarray : Particle positions, shape (N, dim)
    '''
    axes = [
        np.arange(blockMin[d] + spacing / 2.0, blockMax[d], spacing)
        for d in range(len(blockMin))
    ]
    grids = np.meshgrid(*axes, indexing='ij')
    return np.column_stack([g.ravel() for g in grids])


######################################################################
# -- Simulation State -- #
######################################################################

@dataclass
class SimulationState:
    '''
    Diagnostics of the simulation after a step.

    Parameters:
    -----------
    time : float
        Simulation time [s]
    step : int
        Number of completed steps
    dt : float
        Size of the last time step [s]
    densityIterations : int
        Iterations run by the density correction of the last step
    densityConverged : bool
        Whether the density correction met its threshold
    divergenceIterations : int
        Iterations run by the divergence correction of the last step
    divergenceConverged : bool
        Whether the divergence correction met its threshold
    initialDensityError : float
        mean(rho*) - rho_0 predicted before any pressure correction [kg/m^3]
    averageDensityError : float
        mean(rho*) - rho_0 after the density correction [kg/m^3]
    initialDivergence : float
        mean(d rho / dt) before the divergence correction [kg/(m^3 s)]
    averageDivergence : float
        mean(d rho / dt) measured by the last divergence iteration [kg/(m^3 s)]
    maxVelocity : float
        Maximum particle speed [m/s]
    kineticEnergy : float
        Total kinetic energy [J]
    '''

    time: float
    step: int
    dt: float
    densityIterations: int = 0
    densityConverged: bool = True
    divergenceIterations: int = 0
    divergenceConverged: bool = True
    initialDensityError: float = 0.0
    averageDensityError: float = 0.0
    initialDivergence: float = 0.0
    averageDivergence: float = 0.0
    maxVelocity: float = 0.0
    kineticEnergy: float = 0.0

    @property
    def converged(self) -> bool:
        '''True when both correction loops met their thresholds.'''
        return self.densityConverged and self.divergenceConverged


@dataclass(frozen=True)
class ParticleSnapshot:
    '''Read-only copy of one fluid particle, handed to renderers.'''

    id: int
    position: np.ndarray = field(repr=False)
    velocity: np.ndarray = field(repr=False)
    density: float = 0.0
    pressure: float = 0.0


######################################################################
# -- Solver Protocol -- #
######################################################################

class FluidSolver(Protocol):
    '''Protocol for particle fluid solvers.'''

    def step(self) -> SimulationState:
        '''Advance one adaptive time step and return diagnostics.'''
        ...

    def particles(self) -> Iterator[ParticleSnapshot]:
        '''Snapshots of every fluid particle, ordered by id.'''
        ...

    def setBoundary(self, positions: np.ndarray) -> None:
        '''Place static boundary particles (called at most once).'''
        ...

    @property
    def currentState(self) -> SimulationState:
        '''Current simulation state snapshot.'''
        ...
