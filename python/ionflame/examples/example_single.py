#!/usr/bin/python
"""
Stoichiometric methane/air flame in an applied field of 10 kV/m, using the
ionized-gas transport model of the gri30_ion mechanism.
"""

from ionflame import *

conf = Config(
    Paths(outputDir='run/ex_single'),
    InitialCondition(fuel='CH4:1.0',
                     oxidizer='O2:1, N2:3.76',
                     equivalenceRatio=1.0),
    ElectricField(eField=1e4))

if __name__ == '__main__':
    conf.run()
