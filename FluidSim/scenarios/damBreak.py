# -- Dam Break Scenario -- #

'''
Rectangular dam-break scenario.

A block of water rests against the left wall of a closed rectangular
tank. When the simulation starts the column collapses under gravity and
surges across the tank floor.

The scenario creates:
1. Fluid particles filling the water column on a lattice of spacing r,
   so nearest neighbors sit half a smoothing length apart
2. Boundary particles lining every wall of the tank
3. A SimulationConfig whose domain is the tank interior

The vertical axis is y in both 2D and 3D.
'''

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from FluidSim import constants as const
from FluidSim.sph.boundaryHandling import BoundaryWalls
from FluidSim.sph.protocols import SimulationConfig, defaultGravity, latticePositions


######################################################################
# -- Dam Break Configuration -- #
######################################################################

@dataclass
class DamBreakConfig:
    '''
    Configuration for a dam-break scenario.

    Parameters:
    -----------
    tankSize : tuple[float, ...]
        Tank interior extent per axis [m] (2 or 3 components)
    columnSize : tuple[float, ...]
        Water column extent per axis [m], anchored at the tank origin
    particleRadius : float
        Particle radius r [m]
    restDensity : float
        Rest density [kg/m^3]
    boundaryLayers : int
        Number of wall particle layers
    openTop : bool
        If True, no wall particles above the tank
    viscosity : float
        Viscosity coefficient
    surfaceTension : float
        Surface tension coefficient
    nSteps : int
        Default number of steps for the runner
    '''

    tankSize: tuple[float, ...] = (0.3, 0.2)
    columnSize: tuple[float, ...] = (0.1, 0.1)
    particleRadius: float = 0.01
    restDensity: float = const.restDensity
    boundaryLayers: int = const.defaultBoundaryLayers
    openTop: bool = False
    viscosity: float = const.viscosity
    surfaceTension: float = const.surfaceTension
    nSteps: int = 100
    gravity: np.ndarray | None = field(default=None, repr=False)

    @property
    def dimensions(self) -> int:
        '''Number of spatial dimensions.'''
        return len(self.tankSize)

    @classmethod
    def small2D(cls) -> DamBreakConfig:
        '''
        Small 2D dam break for quick testing.

        100 fluid particles, runs in seconds.
        '''
        return cls(
            tankSize=(0.3, 0.2),
            columnSize=(0.1, 0.1),
            particleRadius=0.01,
            nSteps=100,
        )

    @classmethod
    def small3D(cls) -> DamBreakConfig:
        '''
        Small 3D dam break.

        288 fluid particles.
        '''
        return cls(
            tankSize=(0.2, 0.2, 0.1),
            columnSize=(0.06, 0.08, 0.06),
            particleRadius=0.01,
            nSteps=50,
        )


PRESETS = {
    'small2D': DamBreakConfig.small2D,
    'small3D': DamBreakConfig.small3D,
}


######################################################################
# -- Scenario Creation -- #
######################################################################

def createDamBreak(
    damConfig: DamBreakConfig,
    pressureSolver: str = 'divergenceFree',
) -> tuple[SimulationConfig, np.ndarray]:
    '''
    Create a dam-break simulation from configuration.

    Wall particles are spaced one particle radius apart, so the inner
    layer sits half a radius outside the tank and stays within one
    smoothing length of a fluid particle resting on the wall.

    Parameters:
    -----------
    damConfig : DamBreakConfig
        Scenario configuration
    pressureSolver : str
        Pressure strategy name ('divergenceFree' or 'stateEquation')

    Returns:
    --------
    tuple[SimulationConfig, np.ndarray] :
        Ready-to-run configuration and boundary particle positions
    '''
    dim = damConfig.dimensions
    if len(damConfig.columnSize) != dim:
        raise ValueError(
            f'columnSize has {len(damConfig.columnSize)} components, tank has {dim}'
        )

    r = damConfig.particleRadius
    containerMin = np.zeros(dim)
    containerMax = np.asarray(damConfig.tankSize, dtype=np.float64)
    columnMax = np.minimum(np.asarray(damConfig.columnSize, dtype=np.float64), containerMax)

    ######################################################################
    # Boundary walls
    ######################################################################
    walls = BoundaryWalls(
        containerMin=containerMin,
        containerMax=containerMax,
        spacing=r,
        nLayers=damConfig.boundaryLayers,
        openTop=damConfig.openTop,
    )
    boundaryPositions = walls.generatePositions()

    ######################################################################
    # Fluid column
    ######################################################################
    fluidPositions = latticePositions(containerMin, columnMax, r)

    gravity = damConfig.gravity
    if gravity is None:
        gravity = defaultGravity(dim)

    simConfig = SimulationConfig(
        domainStart=containerMin,
        domainEnd=containerMax,
        particleRadius=r,
        restDensity=damConfig.restDensity,
        positions=fluidPositions,
        gravity=gravity,
        viscosity=damConfig.viscosity,
        surfaceTension=damConfig.surfaceTension,
        pressureSolver=pressureSolver,
    )

    return (simConfig, boundaryPositions)
