import logging
import os
import numpy as np

from .assembler import C_U, C_T, C_E, C_Y
from . import utils

_log = logging.getLogger(__name__)

#: Species names recognized as the electron
electronNames = ('E', 'e-', 'electron')


class OutputFile(object):
    """
    Context manager returning a dict-like object to be filled with arrays,
    which are written to an HDF5 (``.h5``) or NumPy (``.npz``) file.
    """
    def __init__(self, filename):
        self.filename = filename

    def __enter__(self):
        dirname = os.path.dirname(self.filename)
        if dirname and not os.path.exists(dirname):
            os.makedirs(dirname)
        if self.filename.endswith('.h5'):
            import h5py
            self.data = h5py.File(self.filename, mode='a')
            return self.data
        elif self.filename.endswith('.npz'):
            self.data = {}
            return self.data
        else:
            raise ValueError("Unknown output file format for file '{0}'."
                " Expected one of: ('h5', 'npz')".format(self.filename))

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.filename.endswith('h5'):
            self.data.close()
        elif self.filename.endswith('npz'):
            np.savez_compressed(self.filename, **self.data)


class ResultExtractor(object):
    """
    Projection of the current solution of a
    :class:`~ionflame.composite.CompositeSystem` onto the quantities that are
    reported. Nothing is recomputed, so calling these methods repeatedly on
    the same state gives identical results.
    """
    def __init__(self, system):
        self.system = system

    def gapVoltage(self):
        """
        Potential difference ``V(0) - V(L)`` across the flow domain [V],
        i.e. the integral of the electric field over the domain.
        """
        z = self.system.z
        E = self.system.X[C_E]
        return float(np.sum(0.5 * (E[1:] + E[:-1]) * np.diff(z)))

    def electronMassFraction(self):
        """ Electron mass fraction profile; zeros if there is no electron """
        flow = self.system.flow
        for name in electronNames:
            if name in flow.provider.speciesNames:
                k = flow.provider.speciesIndex(name)
                return self.system.X[C_Y+k].copy()
        return np.zeros(self.system.nPoints)

    def profile(self):
        """
        A :class:`~ionflame.utils.Struct` holding copies of the solution:

        - *z*: grid positions [m]
        - *T*: temperature [K]
        - *U*: velocity [m/s]
        - *E*: electric field [V/m]
        - *Ye*: electron mass fraction
        - *Y*: all mass fractions, shape ``(nSpecies, nPoints)``
        - *mdot*: mass flux through the flame [kg/m^2/s]
        - *flameSpeed*: velocity of the unburned gas [m/s]
        """
        system = self.system
        flow = system.flow
        X = system.X
        return utils.Struct(
            z=system.z.copy(),
            T=X[C_T].copy(),
            U=X[C_U].copy(),
            E=X[C_E].copy(),
            Ye=self.electronMassFraction(),
            Y=X[C_Y:].copy(),
            mdot=float(system.mdot),
            flameSpeed=float(X[C_U,0]),
            P=flow.pressure,
            stage=flow.stage,
            eField=system.inlet.eField if flow.fieldActive else 0.0,
            Tfixed=flow.Tfixed,
            zFixed=flow.zFixed,
            speciesNames=list(flow.provider.speciesNames))


class ResultWriter(object):
    """
    Writes the gap voltage record, the profile table and the solution
    snapshot of a completed run to ``options.paths.outputDir``.
    """
    def __init__(self, options):
        self.options = options

    def caseName(self, eField):
        return 'phi{:f}_eField{:f}'.format(
            self.options.initialCondition.equivalenceRatio, eField)

    def filename(self, prefix, eField, extension):
        return os.path.join(self.options.paths.outputDir, '{}_{}.{}'.format(
            prefix, self.caseName(eField), extension))

    def __call__(self, result):
        eField = result.fields[-1] if result.fields else 0.0
        self.writeGapVoltages(self.filename('gapvoltage', eField, 'csv'),
                              result.fields, result.gapVoltages)

        profile = result.lastProfile
        if profile is None:
            _log.warning('No converged profile to write')
            return

        self.writeProfile(self.filename('flamespeed', eField, 'csv'), profile)
        if self.options.outputFiles.saveSnapshot:
            ext = self.options.outputFiles.fileExtension
            self.writeSnapshot(self.filename('flamespeed', eField, ext), profile)

    def writeGapVoltages(self, filename, fields, voltages):
        _log.info('Writing gap voltages: %s', filename)
        with open(filename, 'w') as out:
            out.write('eField, gapVoltage\n')
            for eField, V in zip(fields, voltages):
                out.write(' {:16.12e}, {:16.12e}\n'.format(eField, V))

    def writeProfile(self, filename, profile):
        _log.info('Writing profile: %s', filename)
        with open(filename, 'w') as out:
            out.write('  Grid,   Temperature,   Uvec,   E,    eField\n')
            for row in zip(profile.z, profile.T, profile.U, profile.Ye,
                           profile.E):
                out.write(' {:16.12e}, {:16.12e}, {:16.12e}, {:16.12e},'
                          ' {:16.12e}\n'.format(*row))

    def writeSnapshot(self, filename, profile):
        _log.info('Writing output file: %s', filename)
        if os.path.exists(filename):
            os.remove(filename)

        with OutputFile(filename) as data:
            for key in ('z', 'T', 'U', 'E', 'Y', 'mdot', 'P', 'stage',
                        'eField', 'Tfixed', 'zFixed'):
                if profile[key] is not None:
                    data[key] = profile[key]
            data['speciesNames'] = np.array(profile.speciesNames, dtype='S')
            data['phi'] = float(self.options.initialCondition.equivalenceRatio)
