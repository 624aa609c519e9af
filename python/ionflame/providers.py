"""
Property providers used by the flame solver.

The solver never evaluates thermodynamic, kinetic or transport properties
itself. It calls :meth:`PropertyProvider.setState` for one grid point at a
time and then queries the properties of that state. :class:`CanteraGas`
implements the interface on top of a Cantera ``Solution``; other
implementations can be selected with the ``Chemistry.providerClass`` option.
"""

import numpy as np
import cantera as ct

from .errors import PropertyEvaluationError


class PropertyProvider(object):
    """
    Interface of the thermo, kinetics and transport provider.

    Implementations define :attr:`speciesNames`, :attr:`molecularWeights`
    [kg/kmol] and :attr:`charges` (charge numbers), and the methods below.
    All per-species arrays are ordered like :attr:`speciesNames`. The solver
    treats every query as a pure function of the state set last.
    """
    speciesNames = ()
    molecularWeights = None
    charges = None

    @property
    def nSpecies(self):
        return len(self.speciesNames)

    def speciesIndex(self, name):
        return list(self.speciesNames).index(name)

    @property
    def chargedSpecies(self):
        """ Indices of the species with a non-zero charge """
        return np.flatnonzero(self.charges != 0)

    def setState(self, T, P, Y):
        raise NotImplementedError

    def setEquivalenceRatio(self, phi, fuel, oxidizer):
        raise NotImplementedError

    def equilibrate(self, constraint):
        raise NotImplementedError

    def temperature(self):
        raise NotImplementedError

    def density(self):
        raise NotImplementedError

    def massFractions(self):
        raise NotImplementedError

    def moleFractions(self):
        raise NotImplementedError

    def meanMolecularWeight(self):
        raise NotImplementedError

    def cpMass(self):
        raise NotImplementedError

    def thermalConductivity(self):
        raise NotImplementedError

    def partialMolarEnthalpies(self):
        raise NotImplementedError

    def partialMolarCp(self):
        raise NotImplementedError

    def netProductionRates(self):
        raise NotImplementedError

    def mixDiffCoeffs(self):
        raise NotImplementedError

    def mobilities(self):
        """
        Electrical mobilities [m^2/V/s] of all species, from the Einstein
        relation :math:`\\mu_k = |z_k| e D_k / (k_B T)`. Zero for neutral
        species.
        """
        T = self.temperature()
        return (np.abs(self.charges) * ct.electron_charge * self.mixDiffCoeffs()
                / (ct.boltzmann * T))


class CanteraGas(PropertyProvider):
    """
    Property provider backed by a Cantera ``Solution``.

    :param mechanismFile:
        Cantera input file, e.g. ``gri30_ion.yaml``
    :param phaseID:
        Name of the phase in the input file
    :param transportModel:
        Transport model to use, or *None* for the default model of the phase
        (``ionized-gas`` for ``gri30_ion.yaml``).
    """
    def __init__(self, mechanismFile, phaseID='', transportModel=None):
        try:
            if transportModel is None:
                self.gas = ct.Solution(mechanismFile, phaseID)
            else:
                self.gas = ct.Solution(mechanismFile, phaseID,
                                       transport_model=transportModel)
        except ct.CanteraError as err:
            raise PropertyEvaluationError(str(err))

        self.speciesNames = tuple(self.gas.species_names)
        self.molecularWeights = self.gas.molecular_weights
        self.charges = np.array([self.gas.species(k).charge
                                 for k in range(self.gas.n_species)])

    def setState(self, T, P, Y):
        if not (np.isfinite(T) and T > 0):
            raise PropertyEvaluationError(
                'Unphysical temperature T = {!r}'.format(T))
        try:
            self.gas.TPY = T, P, Y
        except ct.CanteraError as err:
            raise PropertyEvaluationError(str(err))

    def setEquivalenceRatio(self, phi, fuel, oxidizer):
        try:
            self.gas.set_equivalence_ratio(phi, fuel, oxidizer)
        except ct.CanteraError as err:
            raise PropertyEvaluationError(str(err))

    def equilibrate(self, constraint):
        try:
            self.gas.equilibrate(constraint)
        except ct.CanteraError as err:
            raise PropertyEvaluationError(
                'Equilibrium calculation failed: {}'.format(err))

    def _get(self, name):
        try:
            return getattr(self.gas, name)
        except ct.CanteraError as err:
            raise PropertyEvaluationError(
                'Evaluating {} failed: {}'.format(name, err))

    def temperature(self):
        return self._get('T')

    def density(self):
        return self._get('density')

    def massFractions(self):
        return self._get('Y')

    def moleFractions(self):
        return self._get('X')

    def meanMolecularWeight(self):
        return self._get('mean_molecular_weight')

    def cpMass(self):
        return self._get('cp_mass')

    def thermalConductivity(self):
        return self._get('thermal_conductivity')

    def partialMolarEnthalpies(self):
        return self._get('partial_molar_enthalpies')

    def partialMolarCp(self):
        return self._get('partial_molar_cp')

    def netProductionRates(self):
        return self._get('net_production_rates')

    def mixDiffCoeffs(self):
        return self._get('mix_diff_coeffs')
