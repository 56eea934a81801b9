# -- Pressure Solver Strategies -- #

'''
Pressure strategies plugged into SphSolver.

The solver owns the step sequence (CFL, neighborhoods, prediction,
integration, hash rebuild). A strategy owns the pressure-specific passes:

    initialize        -- once, from the initial neighborhoods
    timeStepLimit     -- upper bound on dt from the pressure model
    correctDensity    -- after the velocity prediction, before integration
    refreshFactors    -- after the hash rebuild
    correctDivergence -- after refreshFactors, before the velocity commit

Two strategies are available:

    DivergenceFreePressure -- DFSPH: iterative density and divergence
        correction on the predicted velocities (Bender & Koschier 2015)
    StateEquationPressure  -- weakly compressible: density from the
        continuity equation, pressure from a Tait-style equation of
        state, single pass

Both strategies advance density with the same continuity term

    d rho_i / dt = sum_j m_j (v_i - v_j) . grad_W_ij + sum_b m_b v_i . grad_W_ib

so a lattice at rest starts at the rest density whatever its spacing.

All passes operate on flattened NeighborPairs and scatter-add with
np.add.at, so every iteration is a handful of vectorized NumPy calls.

References:
-----------
Bender & Koschier (2015) -- Divergence-Free Smoothed Particle Hydrodynamics
Becker & Teschner (2007) -- Weakly compressible SPH for free surface flows
Akinci et al. (2012) -- Versatile Rigid-Fluid Coupling for Incompressible SPH
'''

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from FluidSim import constants as const
from FluidSim.sph.kernels import SphKernel
from FluidSim.sph.neighborhood import NeighborPairs
from FluidSim.sph.particles import FluidParticles
from FluidSim.sph.protocols import ConfigurationError, SimulationConfig


######################################################################
# -- Shared Types -- #
######################################################################

@dataclass
class StepPairs:
    '''
    Neighbor pairs of one sub-step.

    Parameters:
    -----------
    fluid : NeighborPairs
        Fluid-fluid pairs (both indices are fluid ids)
    boundary : NeighborPairs
        Fluid-boundary pairs (iIdx is a fluid id, jIdx a boundary id)
    boundaryMass : float
        Mass of one boundary particle [kg], 0 without a boundary
    '''

    fluid: NeighborPairs
    boundary: NeighborPairs
    boundaryMass: float = 0.0


@dataclass
class CorrectionResult:
    '''
    Outcome of one correction loop.

    Parameters:
    -----------
    iterations : int
        Iterations run
    converged : bool
        Whether the average error met the threshold
    initialError : float
        Average error measured by the first iteration
    finalError : float
        Average error measured by the last iteration
    '''

    iterations: int = 0
    converged: bool = True
    initialError: float = 0.0
    finalError: float = 0.0


class PressureStrategy(Protocol):
    '''Protocol for the pressure passes of SphSolver.'''

    name: str

    def initialize(self, fluid: FluidParticles, pairs: StepPairs) -> None:
        ...

    def timeStepLimit(self, fluid: FluidParticles) -> float:
        ...

    def correctDensity(
        self, fluid: FluidParticles, pairs: StepPairs, dt: float
    ) -> CorrectionResult:
        ...

    def refreshFactors(self, fluid: FluidParticles, pairs: StepPairs) -> None:
        ...

    def correctDivergence(
        self, fluid: FluidParticles, pairs: StepPairs, dt: float
    ) -> CorrectionResult:
        ...


#--------------------------------------------------------------------#
# -- Shared Pair Terms -- #
#--------------------------------------------------------------------#

def fluidDensityRate(fluid: FluidParticles, pairs: NeighborPairs) -> np.ndarray:
    '''sum_j m_j (v*_i - v*_j) . grad_W_ij'''
    if pairs.nPairs == 0:
        return np.zeros(len(fluid))

    dv = fluid.velocitiesFuture[pairs.iIdx] - fluid.velocitiesFuture[pairs.jIdx]
    return fluid.mass * pairs.sumPerParticle(np.sum(dv * pairs.gradients, axis=1))


def boundaryDensityRate(fluid: FluidParticles, pairs: StepPairs) -> np.ndarray:
    '''sum_b m_b v*_i . grad_W_ib (boundary particles are static)'''
    boundary = pairs.boundary
    if boundary.nPairs == 0:
        return np.zeros(len(fluid))

    vi = fluid.velocitiesFuture[boundary.iIdx]
    return pairs.boundaryMass * boundary.sumPerParticle(np.sum(vi * boundary.gradients, axis=1))


def applyPairPressure(
    fluid: FluidParticles,
    pairs: NeighborPairs,
    pressures: np.ndarray,
    densities: np.ndarray,
    dt: float,
) -> None:
    '''v*_i -= dt * sum_j m_j (p_i/rho_i^2 + p_j/rho_j^2) grad_W_ij'''
    if pairs.nPairs == 0:
        return

    iIdx, jIdx = pairs.iIdx, pairs.jIdx
    pOverRhoSq = pressures / (densities ** 2)
    coeff = fluid.mass * (pOverRhoSq[iIdx] + pOverRhoSq[jIdx])
    fluid.velocitiesFuture -= dt * pairs.sumPerParticle(coeff[:, np.newaxis] * pairs.gradients)


######################################################################
# -- Divergence-Free SPH -- #
######################################################################

class DivergenceFreePressure:
    '''
    DFSPH pressure strategy.

    The dsph factor of particle i is

        alpha_i = rho_i^2 / (|sum_j m_j grad_W_ij|^2 + sum_j |m_j grad_W_ij|^2)

    over fluid neighbors only. It is zero when the denominator is below
    factorEpsilon * (m * max|grad_W|)^2, i.e. for particles without a
    neighbor inside the support.

    Density correction, repeated until mean(rho*) - rho_0 falls below
    the threshold (at least minDensityIterations times):

        rho*_i = rho_i + dt * (sum_j m_j (v*_i - v*_j) . grad_W_ij
                               + sum_b m_b v*_i . grad_W_ib)
        p_i    = max(alpha'_i * (rho*_i - rho_0) / dt^2, 0)
        v*_i  -= dt * sum_j m_j (p_i / rho_i^2 + p_j / rho_j^2) grad_W_ij
        v*_i  -= dt * gamma2_i * sum_b m_b (p_i / rho_i^2) grad_W_ib

    With a boundary, alpha' also counts the boundary gradients in its
    first sum, |sum_j m_j grad_W_ij + sum_b m_b grad_W_ib|^2, so the
    boundary density term is never amplified by a factor that cannot
    see it. Without a boundary alpha' is the dsph factor.

    Divergence correction, repeated until mean(d rho / dt) falls below
    the threshold (at least minDivergenceIterations times):

        drho_i  = max(sum_j m_j (v*_i - v*_j) . grad_W_ij, 0)
        kappa_i = drho_i * alpha_i / dt
        v*_i   -= dt * sum_j m_j (kappa_i / rho_i^2 + kappa_j / rho_j^2) grad_W_ij

    Parameters:
    -----------
    kernel : SphKernel
        Smoothing kernel (its peak gradient scales the factor guard)
    restDensity : float
        Rest density rho_0 [kg/m^3]
    densityThreshold : float
        Tolerance on the average density error [kg/m^3]
    divergenceThreshold : float
        Tolerance on the average density derivative [kg/(m^3 s)]
    maxDensityIterations : int
        Iteration cap of the density correction
    maxDivergenceIterations : int
        Iteration cap of the divergence correction
    '''

    name = 'divergenceFree'

    def __init__(
        self,
        kernel: SphKernel,
        restDensity: float = const.restDensity,
        densityThreshold: float = const.densityThreshold,
        divergenceThreshold: float = const.divergenceThreshold,
        maxDensityIterations: int = const.maxDensityIterations,
        maxDivergenceIterations: int = const.maxDivergenceIterations,
    ) -> None:
        self._kernel = kernel
        self._restDensity = restDensity
        self._densityThreshold = densityThreshold
        self._divergenceThreshold = divergenceThreshold
        self._maxDensityIterations = max(maxDensityIterations, const.minDensityIterations)
        self._maxDivergenceIterations = max(maxDivergenceIterations, const.minDivergenceIterations)

    @classmethod
    def fromConfig(cls, config: SimulationConfig, kernel: SphKernel) -> DivergenceFreePressure:
        return cls(
            kernel=kernel,
            restDensity=config.restDensity,
            densityThreshold=config.densityThreshold,
            divergenceThreshold=config.divergenceThreshold,
            maxDensityIterations=config.maxDensityIterations,
            maxDivergenceIterations=config.maxDivergenceIterations,
        )

    def timeStepLimit(self, fluid: FluidParticles) -> float:
        '''The iterative solve is not stiffness limited.'''
        return math.inf

    #---# Factors

    def initialize(self, fluid: FluidParticles, pairs: StepPairs) -> None:
        '''Compute the initial dsph factors from the initial neighborhoods.'''
        fluid.dsphFactors[:] = self._computeFactors(fluid, pairs.fluid)

    def refreshFactors(self, fluid: FluidParticles, pairs: StepPairs) -> None:
        '''Commit the predicted density and recompute the dsph factors.'''
        fluid.densities[:] = fluid.densitiesFuture
        fluid.dsphFactors[:] = self._computeFactors(fluid, pairs.fluid)

    def _computeFactors(
        self,
        fluid: FluidParticles,
        pairs: NeighborPairs,
        boundary: StepPairs | None = None,
    ) -> np.ndarray:
        n = len(fluid)
        gradSum = np.zeros((n, fluid.dimensions))
        gradSqSum = np.zeros(n)

        if pairs.nPairs > 0:
            massGradients = fluid.mass * pairs.gradients
            gradSum += pairs.sumPerParticle(massGradients)
            gradSqSum += pairs.sumPerParticle(np.sum(massGradients * massGradients, axis=1))

        if boundary is not None and boundary.boundary.nPairs > 0:
            gradSum += boundary.boundaryMass * boundary.boundary.sumPerParticle(
                boundary.boundary.gradients
            )

        denominator = np.sum(gradSum * gradSum, axis=1) + gradSqSum
        valid = denominator > const.factorEpsilon * (fluid.mass * self._kernel.maxGradient) ** 2

        factors = np.zeros(n)
        factors[valid] = fluid.densities[valid] ** 2 / denominator[valid]
        return factors

    def _boundaryGamma(self, pairs: StepPairs) -> np.ndarray:
        '''
        gamma2_i = |sum_j grad_W_ij . sum_b grad_W_ib| / |sum_b grad_W_ib|^2

        Zero for particles that see no boundary gradient.
        '''
        fluidGradSum = pairs.fluid.sumPerParticle(pairs.fluid.gradients)
        boundaryGradSum = pairs.boundary.sumPerParticle(pairs.boundary.gradients)

        boundaryNormSq = np.sum(boundaryGradSum * boundaryGradSum, axis=1)
        projection = np.abs(np.sum(fluidGradSum * boundaryGradSum, axis=1))

        gamma = np.zeros(len(boundaryNormSq))
        valid = boundaryNormSq > const.factorEpsilon * self._kernel.maxGradient ** 2
        gamma[valid] = projection[valid] / boundaryNormSq[valid]
        return gamma

    #---# Density correction

    def correctDensity(
        self, fluid: FluidParticles, pairs: StepPairs, dt: float
    ) -> CorrectionResult:
        '''
        Iteratively remove the predicted density error from v*.

        Parameters:
        -----------
        fluid : FluidParticles
            Fluid state; velocitiesFuture, densitiesFuture and pressures
            are updated in place
        pairs : StepPairs
            Neighbor pairs of the positions before integration
        dt : float
            Time step [s]

        Returns:
        --------
        CorrectionResult : Iterations, convergence, average density errors
        '''
        if len(fluid) == 0:
            return CorrectionResult()

        rho0 = self._restDensity
        hasBoundary = pairs.boundary.nPairs > 0
        if hasBoundary:
            gamma = self._boundaryGamma(pairs)
            factors = self._computeFactors(fluid, pairs.fluid, boundary=pairs)
            boundaryGradSum = pairs.boundary.sumPerParticle(pairs.boundary.gradients)
        else:
            factors = fluid.dsphFactors

        result = CorrectionResult(converged=False)
        averageError = np.inf

        while (
            result.iterations < const.minDensityIterations
            or averageError > self._densityThreshold
        ) and result.iterations < self._maxDensityIterations:

            rate = fluidDensityRate(fluid, pairs.fluid)
            if hasBoundary:
                rate += boundaryDensityRate(fluid, pairs)
            fluid.densitiesFuture[:] = fluid.densities + dt * rate

            averageError = float(np.mean(fluid.densitiesFuture)) - rho0
            if result.iterations == 0:
                result.initialError = averageError

            fluid.pressures[:] = np.maximum(
                factors * (fluid.densitiesFuture - rho0) / (dt * dt), 0.0
            )
            applyPairPressure(fluid, pairs.fluid, fluid.pressures, fluid.densities, dt)

            if hasBoundary:
                pOverRhoSq = fluid.pressures / (fluid.densities ** 2)
                push = boundaryGradSum * (
                    pairs.boundaryMass * gamma * pOverRhoSq
                )[:, np.newaxis]
                fluid.velocitiesFuture -= dt * push

            result.iterations += 1

        result.finalError = averageError
        result.converged = averageError <= self._densityThreshold
        return result

    #---# Divergence correction

    def correctDivergence(
        self, fluid: FluidParticles, pairs: StepPairs, dt: float
    ) -> CorrectionResult:
        '''
        Iteratively remove the positive density derivative from v*.

        Parameters:
        -----------
        fluid : FluidParticles
            Fluid state; velocitiesFuture and pressures are updated in place
        pairs : StepPairs
            Neighbor pairs of the positions after integration
        dt : float
            Time step [s]

        Returns:
        --------
        CorrectionResult : Iterations, convergence, average divergences
        '''
        if len(fluid) == 0:
            return CorrectionResult()

        result = CorrectionResult(converged=False)
        averageDivergence = np.inf

        while (
            result.iterations < const.minDivergenceIterations
            or averageDivergence > self._divergenceThreshold
        ) and result.iterations < self._maxDivergenceIterations:

            derivative = np.maximum(fluidDensityRate(fluid, pairs.fluid), 0.0)
            averageDivergence = float(np.mean(derivative))
            if result.iterations == 0:
                result.initialError = averageDivergence

            fluid.pressures[:] = derivative * fluid.dsphFactors / dt
            applyPairPressure(fluid, pairs.fluid, fluid.pressures, fluid.densities, dt)

            result.iterations += 1

        result.finalError = averageDivergence
        result.converged = averageDivergence <= self._divergenceThreshold
        return result


######################################################################
# -- State Equation (Weakly Compressible) -- #
######################################################################

class StateEquationPressure:
    '''
    Weakly compressible pressure strategy.

    Density from the continuity equation on the predicted velocities
    (fluid and static boundary neighbors):

        rho*_i = rho_i + dt * d rho_i / dt

    Pressure from the state equation, clamped at zero:

        p_i = max(B * ((rho*_i / rho_0)^gamma - 1), 0)

    One symmetric pressure update of v* plus a one-sided boundary term,
    no iteration. The divergence pass is a no-op.

    The stiffness fixes the speed of sound c = sqrt(gamma * B / rho_0),
    and the time step is bounded by cfl * h / (c + max|v|).

    Parameters:
    -----------
    kernel : SphKernel
        Smoothing kernel
    restDensity : float
        Rest density rho_0 [kg/m^3]
    stiffness : float
        Pressure stiffness B [Pa]
    exponent : float
        State equation exponent gamma
    cflParameter : float
        CFL number of the acoustic time step bound
    '''

    name = 'stateEquation'

    def __init__(
        self,
        kernel: SphKernel,
        restDensity: float = const.restDensity,
        stiffness: float = const.stiffness,
        exponent: float = const.stateExponent,
        cflParameter: float = const.cflParameter,
    ) -> None:
        self._kernel = kernel
        self._restDensity = restDensity
        self._stiffness = stiffness
        self._exponent = exponent
        self._cflParameter = cflParameter

    @classmethod
    def fromConfig(cls, config: SimulationConfig, kernel: SphKernel) -> StateEquationPressure:
        return cls(
            kernel=kernel,
            restDensity=config.restDensity,
            stiffness=config.stiffness,
            exponent=config.stateExponent,
            cflParameter=config.cflParameter,
        )

    @property
    def speedOfSound(self) -> float:
        '''Numerical speed of sound c = sqrt(gamma * B / rho_0) [m/s].'''
        return math.sqrt(self._exponent * self._stiffness / self._restDensity)

    def timeStepLimit(self, fluid: FluidParticles) -> float:
        '''dt <= cfl * h / (c + max|v|)'''
        return (
            self._cflParameter * self._kernel.smoothingLength
            / (self.speedOfSound + fluid.maxSpeed())
        )

    def initialize(self, fluid: FluidParticles, pairs: StepPairs) -> None:
        fluid.densitiesFuture[:] = fluid.densities

    def predictedDensities(
        self, fluid: FluidParticles, pairs: StepPairs, dt: float
    ) -> np.ndarray:
        '''Continuity density of the predicted velocities.'''
        rate = fluidDensityRate(fluid, pairs.fluid) + boundaryDensityRate(fluid, pairs)
        return fluid.densities + dt * rate

    def pressuresOf(self, densities: np.ndarray) -> np.ndarray:
        '''p = max(B ((rho / rho_0)^gamma - 1), 0)'''
        ratio = densities / self._restDensity
        return np.maximum(self._stiffness * (ratio ** self._exponent - 1.0), 0.0)

    def correctDensity(
        self, fluid: FluidParticles, pairs: StepPairs, dt: float
    ) -> CorrectionResult:
        '''
        Single state-equation pressure pass on v*.

        Returns:
        --------
        CorrectionResult : One iteration, always converged
        '''
        if len(fluid) == 0:
            return CorrectionResult()

        densities = self.predictedDensities(fluid, pairs, dt)
        fluid.densitiesFuture[:] = densities
        fluid.pressures[:] = self.pressuresOf(densities)

        applyPairPressure(fluid, pairs.fluid, fluid.pressures, densities, dt)

        if pairs.boundary.nPairs > 0:
            pOverRhoSq = fluid.pressures / (densities ** 2)
            coeff = pairs.boundaryMass * pOverRhoSq[pairs.boundary.iIdx]
            fluid.velocitiesFuture -= dt * pairs.boundary.sumPerParticle(
                coeff[:, np.newaxis] * pairs.boundary.gradients
            )

        averageError = float(np.mean(densities)) - self._restDensity
        return CorrectionResult(
            iterations=1, converged=True, initialError=averageError, finalError=averageError
        )

    def refreshFactors(self, fluid: FluidParticles, pairs: StepPairs) -> None:
        '''Commit the predicted density; there are no factors to refresh.'''
        fluid.densities[:] = fluid.densitiesFuture

    def correctDivergence(
        self, fluid: FluidParticles, pairs: StepPairs, dt: float
    ) -> CorrectionResult:
        return CorrectionResult()


######################################################################
# -- Strategy Factory -- #
######################################################################

def createPressureSolver(config: SimulationConfig, kernel: SphKernel) -> PressureStrategy:
    '''
    Create the pressure strategy named by config.pressureSolver.

    Parameters:
    -----------
    config : SimulationConfig
        Simulation configuration
    kernel : SphKernel
        Smoothing kernel of the simulation

    Returns:
    --------
    PressureStrategy : Strategy instance

    Raises:
    -------
    ConfigurationError : If the name is unknown
    '''
    if config.pressureSolver == 'divergenceFree':
        return DivergenceFreePressure.fromConfig(config, kernel)
    elif config.pressureSolver == 'stateEquation':
        return StateEquationPressure.fromConfig(config, kernel)
    else:
        raise ConfigurationError(f'Unknown pressure solver: {config.pressureSolver}')
