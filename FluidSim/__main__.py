# -- FluidSim Entry Point -- #

'''Allows running the dam-break runner with python -m FluidSim.'''

from FluidSim.runner import main

main()
