#!/usr/bin/python
"""
Plot the temperature, velocity and electric field profiles saved by a
previous run, e.g. of example_single.py.
"""

import sys
from ionflame import *
import matplotlib as mpl
mpl.use('Agg')
import matplotlib.pyplot as plt

if __name__ == '__main__':
    struct = utils.load(sys.argv[1])

    fig, axes = plt.subplots(2, 1, sharex=True)
    axes[0].plot(struct.z, struct.U)
    axes[0].set_ylabel('Axial Velocity [m/s]')
    ax = axes[0].twinx()
    ax.plot(struct.z, struct.T, 'r--')
    ax.tick_params(colors='r')
    ax.set_ylabel('Temperature (K)', color='r')

    axes[1].plot(struct.z, struct.E)
    axes[1].set_xlabel('Position [m]')
    axes[1].set_ylabel('Electric Field [V/m]')
    fig.savefig(sys.argv[1].rsplit('.', 1)[0] + '.png')
    plt.close(fig)
