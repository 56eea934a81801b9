# -- Physical and Numerical Constants for FluidSim -- #

'''
Default physical and numerical parameters for the DFSPH fluid solver.
All values in SI units unless otherwise noted.

References:
-----------
Bender & Koschier (2015) -- Divergence-free smoothed particle hydrodynamics
Monaghan (1994) -- Simulating free surface flows with SPH
'''

#--------------------------------------------------------------------#
# -- Fluid Properties -- #
#--------------------------------------------------------------------#

# Rest density of water [kg/m^3]
restDensity: float = 1000.0

# Gravitational acceleration magnitude [m/s^2]
gravity: float = 9.81

# Default particle radius [m]
# Smoothing length (kernel support) is always 2 * particleRadius
particleRadius: float = 0.025

# Viscosity coefficient (0 disables the viscous term)
viscosity: float = 0.0

# Surface tension (cohesion) coefficient (0 disables the term)
surfaceTension: float = 0.0

#--------------------------------------------------------------------#
# -- Time Stepping -- #
#--------------------------------------------------------------------#

# CFL parameter: fraction of the particle radius a particle
# may travel per step, dt = cflParameter * r / max(max|v|, 1)
cflParameter: float = 0.4

# Lower bound on max|v| in the CFL denominator [m/s]
# Keeps dt finite when the fluid is at rest
cflMinSpeed: float = 1.0

#--------------------------------------------------------------------#
# -- DFSPH Pressure Solver -- #
#--------------------------------------------------------------------#

# Density solver stops once mean(rho*) - rho_0 <= densityThreshold [kg/m^3]
densityThreshold: float = 0.3

# Divergence solver stops once mean(d rho / dt) <= divergenceThreshold [kg/(m^3 s)]
divergenceThreshold: float = 0.3

# The density solver always runs at least this many iterations
minDensityIterations: int = 2

# The divergence solver always runs at least this many iterations
minDivergenceIterations: int = 1

# Hard iteration caps for the two correction loops
maxDensityIterations: int = 100
maxDivergenceIterations: int = 100

# Factor denominators below factorEpsilon * (m * max|grad_W|)^2 count as
# zero (particles without a neighbor inside the support)
factorEpsilon: float = 1e-6

#--------------------------------------------------------------------#
# -- State Equation Pressure Solver -- #
#--------------------------------------------------------------------#

# Pressure stiffness for p = k * ((rho / rho_0)^gamma - 1) [Pa]
stiffness: float = 50000.0

# State equation exponent
# gamma = 7 is the Tait value for water, gamma = 1 is the linear law
stateExponent: float = 7.0

#--------------------------------------------------------------------#
# -- Boundaries -- #
#--------------------------------------------------------------------#

# Restitution coefficient for domain-face reflection
# v -= (1 + restitution) * (v . n) * n
restitution: float = 0.2

# Number of boundary particle layers per wall
defaultBoundaryLayers: int = 2
