"""
Command line interface::

    ionflame PHI EFIELD [REFINE_GRID] [LOGLEVEL] [--output-dir DIR]
             [--mechanism FILE]

Solves a freely-propagating flame with equivalence ratio PHI and applied
field EFIELD [V/m], writing the results to ``phi{PHI}_eField{EFIELD}`` unless
another directory is given. The directory name uses PHI and EFIELD exactly
as they are written on the command line.
"""

import argparse
import sys

from .errors import InvalidInput, IonFlameError
from .input import (Config, Paths, General, Chemistry, InitialCondition,
                    ElectricField)


def number(text):
    """ Check that *text* is a number, but keep it as written """
    float(text)
    return text


def parseArgs(argv=None):
    parser = argparse.ArgumentParser(
        prog='ionflame',
        description='Compute the structure and gap voltage of a'
                    ' freely-propagating premixed flame in an electric field')
    parser.add_argument('phi', type=number, help='Equivalence ratio')
    parser.add_argument('eField', type=number, help='Applied electric field [V/m]')
    parser.add_argument('refineGrid', type=int, nargs='?', default=1,
                        help='Refine the grid (1) or not (0) (default: 1)')
    parser.add_argument('loglevel', type=int, nargs='?', default=1,
                        help='Log verbosity, 0-2 (default: 1)')
    parser.add_argument('--output-dir', '-o', dest='outputDir',
                        help='Output directory (default: phi{PHI}_eField{EFIELD})')
    parser.add_argument('--mechanism', '-m', default='gri30_ion.yaml',
                        help='Cantera input file (default: gri30_ion.yaml)')
    parser.add_argument('--log-file', dest='logFile',
                        help='Write log messages to this file instead of stdout')
    return parser.parse_args(argv)


def makeConfig(args):
    outputDir = args.outputDir or 'phi{}_eField{}'.format(args.phi, args.eField)
    return Config(
        Paths(outputDir=outputDir, logFile=args.logFile),
        General(refineGrid=bool(args.refineGrid), loglevel=args.loglevel),
        Chemistry(mechanismFile=args.mechanism),
        InitialCondition(equivalenceRatio=float(args.phi)),
        ElectricField(eField=float(args.eField)))


def main(argv=None):
    args = parseArgs(argv)
    try:
        conf = makeConfig(args)
        result = conf.run()
    except InvalidInput as err:
        print('Error: {}'.format(err), file=sys.stderr)
        return 2
    except IonFlameError as err:
        print('{}: {}'.format(err.kind.value, err), file=sys.stderr)
        return 1

    if not result.converged:
        print('{}'.format(result.failure), file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
