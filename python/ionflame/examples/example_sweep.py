#!/usr/bin/python
"""
Gap voltage of a lean methane/air flame for a sequence of applied field
strengths. Each field strength starts from the converged solution for the
previous one, and the resulting voltage-field curve is plotted.
"""

import os
import numpy as np
from ionflame import *
import matplotlib as mpl
mpl.use('Agg')
import matplotlib.pyplot as plt

output = 'run/ex_sweep'
fields = [0.0, 1e2, 1e3, 3e3, 1e4]

conf = Config(
    Paths(outputDir=output),
    InitialCondition(fuel='CH4:1.0',
                     oxidizer='O2:1, N2:3.76',
                     equivalenceRatio=0.8,
                     velocity=0.2),
    Grid(xRight=0.05),
    ElectricField(sweep=fields))

if __name__ == '__main__':
    conf.run()

    name = 'gapvoltage_phi{:f}_eField{:f}.csv'.format(0.8, fields[-1])
    data = np.loadtxt(os.path.join(output, name), delimiter=',', skiprows=1)

    plt.figure()
    plt.plot(data[:,0], data[:,1], 'o-')
    plt.xlabel('Applied field [V/m]')
    plt.ylabel('Gap voltage [V]')
    plt.savefig(os.path.join(output, 'gapVoltage.png'))
    plt.close()
