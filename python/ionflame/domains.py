"""
The three domain variants that make up a freely-propagating flame: an
:class:`Inlet` holding the unburned mixture, the :class:`FreeFlow` domain
where the governing equations are solved, and an :class:`Outlet`.

Each domain owns only its boundary-condition parameters, component metadata
(names, bounds, tolerances) and its residual. Unknowns live in the
:class:`~ionflame.composite.CompositeSystem`.
"""

import numpy as np

from .assembler import FlowAssembler, C_U, C_T, C_E, C_Y


class Domain(object):
    """
    Component bookkeeping shared by the domain variants.

    :param componentNames:
        Names of the components at each point of this domain
    """
    def __init__(self, name, componentNames):
        self.name = name
        self.componentNames = list(componentNames)
        nc = len(self.componentNames)
        self.lower = np.full(nc, -1e20)
        self.upper = np.full(nc, 1e20)
        self._rtol = {False: np.full(nc, 1e-4), True: np.full(nc, 1e-4)}
        self._atol = {False: np.full(nc, 1e-9), True: np.full(nc, 1e-11)}
        self.refineActive = np.ones(nc, dtype=bool)

    def nComponents(self):
        return len(self.componentNames)

    def componentIndex(self, component):
        """ Index of *component*, given by name or already as an index """
        if isinstance(component, str):
            return self.componentNames.index(component)
        return int(component)

    def setBounds(self, component, lower, upper):
        i = self.componentIndex(component)
        self.lower[i] = lower
        self.upper[i] = upper

    def setSteadyTolerances(self, rtol, atol, components=None):
        self._setTolerances(False, rtol, atol, components)

    def setTransientTolerances(self, rtol, atol, components=None):
        self._setTolerances(True, rtol, atol, components)

    def tolerances(self, transient=False):
        """ Relative and absolute tolerance of each component """
        return self._rtol[transient], self._atol[transient]

    def _setTolerances(self, transient, rtol, atol, components):
        if components is None:
            i = slice(None)
        else:
            i = [self.componentIndex(c) for c in components]
        self._rtol[transient][i] = rtol
        self._atol[transient][i] = atol


class Inlet(Domain):
    """
    Inlet of a freely-propagating flame.

    The mass flow rate is an unknown (the flame-speed eigenvalue); the inlet
    ties it to the mass flux at the first flow point. The inlet temperature,
    composition and applied electric field are fixed parameters.

    :param temperature:
        Temperature of the unburned mixture [K]
    :param massFractions:
        Mass fractions of the unburned mixture
    :param mdot:
        Initial estimate of the mass flow rate [kg/m^2/s]
    """
    def __init__(self, temperature, massFractions, mdot=0.0):
        Domain.__init__(self, 'inlet', ['mdot', 'temperature'])
        self.temperature = temperature
        self.massFractions = np.asarray(massFractions, dtype=float)
        self.mdot = mdot
        self.eField = 0.0
        self.setBounds('mdot', -1e5, 1e5)
        self.setBounds('temperature', 200.0, 1e5)

    def setEField(self, eField):
        """ Set the field strength [V/m] applied at the inlet in stage 2. """
        self.eField = eField

    def initialValues(self):
        return np.array([self.mdot, self.temperature])

    def residual(self, xin, X, props):
        return np.array([props.rho[0] * X[C_U, 0] - xin[0],
                         xin[1] - self.temperature])

    def boundaryStitch(self, rsd, xin, X, flow):
        """
        Impose the inlet conditions on the first point of the flow domain.
        """
        rsd[C_T, 0] -= xin[1]
        feed = xin[0] * self.massFractions
        feed[flow.excessSpecies] = 0.0
        if flow.fieldActive:
            feed[flow.provider.chargedSpecies] = 0.0
            rsd[C_E, 0] -= self.eField
        rsd[C_Y:, 0] += feed


class Outlet(Domain):
    """
    Outlet with zero gradients of temperature and composition. Has no
    unknowns of its own.
    """
    def __init__(self):
        Domain.__init__(self, 'outlet', [])

    def initialValues(self):
        return np.zeros(0)

    def residual(self, xout, X, props):
        return np.zeros(0)

    def boundaryStitch(self, rsd, X, flow):
        rsd[C_T, -1] = X[C_T, -1] - X[C_T, -2]
        Y = X[C_Y:]
        skip = rsd[C_Y + flow.excessSpecies, -1]
        rsd[C_Y:, -1] = Y[:, -1] - Y[:, -2]
        rsd[C_Y + flow.excessSpecies, -1] = skip


class FreeFlow(Domain):
    """
    One-dimensional freely-propagating flow with temperature, species and
    electric-field equations.

    Components at each point are ``velocity``, ``T``, ``eField`` and the mass
    fraction of each species of *provider*.

    :param provider:
        A :class:`~ionflame.providers.PropertyProvider`
    :param pressure:
        Thermodynamic pressure [Pa]
    """
    def __init__(self, provider, pressure):
        names = ['velocity', 'T', 'eField'] + list(provider.speciesNames)
        Domain.__init__(self, 'flow', names)
        self.provider = provider
        self.pressure = pressure
        self.stage = 1
        self.excessSpecies = 0
        self.Tfixed = None
        self.zFixed = None

        self.setBounds('velocity', -1e20, 1e20)
        self.setBounds('T', 200.0, 1e9)
        self.setBounds('eField', -1e20, 1e20)
        for k in range(provider.nSpecies):
            self.setBounds(C_Y + k, -1e-7, 1e5)
        for k in provider.chargedSpecies:
            if provider.charges[k] < 0 and provider.molecularWeights[k] < 1e-2:
                self.setBounds(C_Y + k, -1e-18, 1.0) # electrons
            else:
                self.setBounds(C_Y + k, -1e-14, 1.0)

        self.assembler = FlowAssembler(self)
        self.setStage(1)

    @property
    def nSpecies(self):
        return self.provider.nSpecies

    @property
    def fieldActive(self):
        return self.stage == 2

    def setStage(self, stage):
        """
        Select the active equations. In stage 1 the electric field is held at
        zero; in stage 2 Gauss's law is solved and charged species drift in
        the field.
        """
        self.stage = int(stage)
        self.refineActive[C_E] = self.fieldActive

    def setExcessSpecies(self, massFractions):
        """
        Close the boundary species equations with the sum of mass fractions,
        using the most abundant species of *massFractions*.
        """
        self.excessSpecies = int(np.argmax(massFractions))

    def fixedIndex(self, z):
        """ Index of the point where the temperature is held fixed """
        j = np.flatnonzero(z == self.zFixed)
        if not len(j):
            raise KeyError('Fixed-temperature point is not on the grid')
        return int(j[0])

    def diagonal(self, nPoints):
        """
        Mask of the residuals that have a time derivative: temperature and
        species at interior points. All others are algebraic constraints.
        """
        diag = np.zeros((self.nComponents(), nPoints), dtype=bool)
        diag[C_T, 1:-1] = True
        diag[C_Y:, 1:-1] = True
        return diag

    def residual(self, z, X, props, rdt=0.0, Xprev=None):
        return self.assembler.residual(z, X, props, rdt, Xprev)
