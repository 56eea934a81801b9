# -- Fluid Simulation Runner -- #

'''
Command-line entry point for running SPH fluid simulations.

Sets up a dam-break preset or a JSON configuration, runs the solver
for a fixed number of steps with a progress bar, reports steps whose
correction loops hit their iteration caps, and prints a summary.

Usage:
    python -m FluidSim.runner                              # Small 2D dam break
    python -m FluidSim.runner --preset small3D             # Small 3D dam break
    python -m FluidSim.runner --solver stateEquation       # State equation pressure
    python -m FluidSim.runner --config configs/column.json --steps 200
'''

from __future__ import annotations

import argparse
import json
import time as timeModule

import numpy as np
from tqdm import tqdm

from FluidSim.scenarios.damBreak import PRESETS, DamBreakConfig, createDamBreak
from FluidSim.sph.boundaryHandling import BoundaryWalls
from FluidSim.sph.protocols import PRESSURE_SOLVERS, SimulationConfig, SimulationState
from FluidSim.sph.solver import SphSolver


#--------------------------------------------------------------------#
# -- CLI Argument Parser -- #
#--------------------------------------------------------------------#

def buildParser() -> argparse.ArgumentParser:
    '''Build the CLI argument parser.'''
    parser = argparse.ArgumentParser(
        description='FluidSim -- DFSPH fluid simulation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        '--config', type=str, default=None,
        help='Path to JSON configuration file',
    )
    parser.add_argument(
        '--preset', type=str, default='small2D',
        choices=sorted(PRESETS),
        help='Dam-break preset (default: small2D)',
    )
    parser.add_argument(
        '--solver', type=str, default=None,
        choices=PRESSURE_SOLVERS,
        help='Pressure solver (default: divergenceFree, or the config file value)',
    )
    parser.add_argument(
        '--steps', type=int, default=None,
        help='Number of time steps (default: preset value, 100 for configs)',
    )
    parser.add_argument(
        '--no-progress', action='store_true',
        help='Hide the progress bar',
    )

    return parser


#--------------------------------------------------------------------#
# -- Runner Class -- #
#--------------------------------------------------------------------#

class FluidSimRunner:
    '''
    Runs an SPH simulation and keeps the per-step diagnostics.

    Parameters:
    -----------
    showProgress : bool
        Whether to show a tqdm progress bar
    '''

    def __init__(self, showProgress: bool = True) -> None:
        self._showProgress = showProgress
        self._states: list[SimulationState] = []

    @property
    def states(self) -> list[SimulationState]:
        '''Diagnostics of every completed step.'''
        return list(self._states)

    def runDamBreak(
        self,
        damConfig: DamBreakConfig,
        pressureSolver: str = 'divergenceFree',
        nSteps: int | None = None,
    ) -> dict:
        '''
        Run a dam-break scenario.

        Parameters:
        -----------
        damConfig : DamBreakConfig
            Scenario configuration
        pressureSolver : str
            Pressure strategy name
        nSteps : int | None
            Number of steps (defaults to damConfig.nSteps)

        Returns:
        --------
        dict : Simulation results summary
        '''
        simConfig, boundaryPositions = createDamBreak(damConfig, pressureSolver)

        return self.run(
            simConfig,
            boundaryPositions,
            nSteps if nSteps is not None else damConfig.nSteps,
            title=f'{damConfig.dimensions}D DAM BREAK',
        )

    def runFromConfig(
        self,
        configPath: str,
        pressureSolver: str | None = None,
        nSteps: int | None = None,
    ) -> dict:
        '''
        Run a simulation from a JSON configuration file.

        An optional 'boundary' section ({"layers": n, "openTop": bool})
        lines the domain with wall particles spaced one radius apart.

        Parameters:
        -----------
        configPath : str
            Path to the JSON configuration file
        pressureSolver : str | None
            Overrides the file's pressure solver when given
        nSteps : int | None
            Number of steps (defaults to the file's 'steps' value, or 100)

        Returns:
        --------
        dict : Simulation results summary
        '''
        simConfig = SimulationConfig.fromJson(configPath)
        if pressureSolver is not None:
            simConfig.pressureSolver = pressureSolver

        with open(configPath, 'r') as f:
            data = json.load(f)

        boundaryPositions = None
        boundarySection = data.get('boundary')
        if boundarySection is not None:
            walls = BoundaryWalls(
                containerMin=simConfig.domainStart,
                containerMax=simConfig.domainEnd,
                spacing=simConfig.particleRadius,
                nLayers=boundarySection.get('layers', 2),
                openTop=boundarySection.get('openTop', False),
            )
            boundaryPositions = walls.generatePositions()

        if nSteps is None:
            nSteps = data.get('steps', 100)

        return self.run(simConfig, boundaryPositions, nSteps, title=configPath)

    def run(
        self,
        simConfig: SimulationConfig,
        boundaryPositions: np.ndarray | None,
        nSteps: int,
        title: str = 'SIMULATION',
    ) -> dict:
        '''
        Run the solver for a fixed number of steps.

        Parameters:
        -----------
        simConfig : SimulationConfig
            Simulation configuration
        boundaryPositions : np.ndarray | None
            Static boundary particle positions, or None
        nSteps : int
            Number of steps
        title : str
            Banner title

        Returns:
        --------
        dict : Simulation results summary
        '''
        print()
        print('=' * 62)
        print(f'  FLUIDSIM -- {title.upper()}')
        print('=' * 62)
        print()

        #--------------------------------------------------------------------#
        # Scenario Setup
        #--------------------------------------------------------------------#
        print('-' * 62)
        print('  SCENARIO SETUP')
        print('-' * 62)

        solver = SphSolver(simConfig)
        if boundaryPositions is not None:
            solver.setBoundary(boundaryPositions)

        nBoundary = 0 if solver.boundary is None else len(solver.boundary)
        domainSize = ' x '.join(f'{d:.3f}' for d in simConfig.domainSize)

        print(f'  Dimensions:        {simConfig.dimensions:8d}D')
        print(f'  Domain:            {domainSize} m')
        print(f'  Particle Radius:   {simConfig.particleRadius:8.4f} m')
        print(f'  Smoothing Length:  {simConfig.smoothingLength:8.4f} m')
        print(f'  Particle Mass:     {solver.fluid.mass:8.4e} kg')
        print(f'  Fluid Particles:   {simConfig.particleCount:8d}')
        print(f'  Boundary Particles:{nBoundary:8d}')
        print(f'  Pressure Solver:   {solver.strategy.name}')
        print(f'  Steps:             {nSteps:8d}')
        print()

        #--------------------------------------------------------------------#
        # Simulation Loop
        #--------------------------------------------------------------------#
        print('-' * 62)
        print('  RUNNING SIMULATION')
        print('-' * 62)

        self._states = []
        nonConverged: list[SimulationState] = []
        wallClockStart = timeModule.time()

        for _ in tqdm(range(nSteps), disable=not self._showProgress, ncols=62):
            state = solver.step()
            self._states.append(state)
            if not state.converged:
                nonConverged.append(state)

        wallClockSeconds = timeModule.time() - wallClockStart
        finalState = solver.currentState

        print()
        print(f'  Simulation complete.')
        print(f'  Total steps:       {finalState.step:8d}')
        print(f'  Simulated time:    {finalState.time:8.4f} s')
        print(f'  Wall-clock time:   {wallClockSeconds:8.1f} s')
        print()

        if nonConverged:
            print(f'  WARNING: {len(nonConverged)} step(s) hit an iteration cap')
            for state in nonConverged[:5]:
                print(
                    f'    step {state.step:6d}: density {state.densityIterations:4d} it '
                    f'(err {state.averageDensityError:9.3e}), divergence '
                    f'{state.divergenceIterations:4d} it (div {state.averageDivergence:9.3e})'
                )
            print()

        #--------------------------------------------------------------------#
        # Summary
        #--------------------------------------------------------------------#
        densityIterations = [s.densityIterations for s in self._states]
        divergenceIterations = [s.divergenceIterations for s in self._states]

        print('=' * 62)
        print('  SIMULATION SUMMARY')
        print('=' * 62)
        print(f'  {"":20}{"Mean":>12}{"Max":>12}')
        if self._states:
            print(
                f'  {"Density Iters":20}{np.mean(densityIterations):12.2f}'
                f'{np.max(densityIterations):12d}'
            )
            print(
                f'  {"Divergence Iters":20}{np.mean(divergenceIterations):12.2f}'
                f'{np.max(divergenceIterations):12d}'
            )
        print(f'  Final KE:          {finalState.kineticEnergy:10.6f} J')
        print(f'  Density Error:     {finalState.averageDensityError:10.4f} kg/m^3')
        print(f'  Max Velocity:      {finalState.maxVelocity:10.4f} m/s')
        print('=' * 62)
        print()

        return {
            'finalState': finalState,
            'wallClockSeconds': wallClockSeconds,
            'nSteps': len(self._states),
            'nonConvergedSteps': len(nonConverged),
            'particleCount': len(solver.positions),
        }


#--------------------------------------------------------------------#
# -- CLI Entry Point -- #
#--------------------------------------------------------------------#

def main(argv: list[str] | None = None) -> dict:
    '''CLI entry point.'''
    parser = buildParser()
    args = parser.parse_args(argv)

    runner = FluidSimRunner(showProgress=not args.no_progress)

    if args.config:
        return runner.runFromConfig(args.config, pressureSolver=args.solver, nSteps=args.steps)

    damConfig = PRESETS[args.preset]()
    return runner.runDamBreak(
        damConfig,
        pressureSolver=args.solver or 'divergenceFree',
        nSteps=args.steps,
    )


if __name__ == '__main__':
    main()
