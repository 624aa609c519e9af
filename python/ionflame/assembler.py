"""
Finite-difference residuals of the governing equations in the flow domain.

The state of the flow domain is handled as an array *X* of shape
``(nComponents, nPoints)`` whose rows are, in order, the velocity, the
temperature, the electric field and the species mass fractions (see the
``C_*`` offsets below).
"""

import numpy as np
import cantera as ct

from .errors import PropertyEvaluationError

C_U = 0  #: axial velocity [m/s]
C_T = 1  #: temperature [K]
C_E = 2  #: electric field [V/m]
C_Y = 3  #: first species mass fraction


class FlowProperties(object):
    """
    Thermodynamic, kinetic and transport properties at each point of the flow
    domain, as returned by the property provider.

    :meth:`update` only queries the provider at points whose temperature or
    composition differs from the state of the last evaluation, so the
    properties always correspond to the current iterate.
    """
    #: Most negative mass fraction accepted before a state is considered
    #: unphysical.
    negativeTolerance = 1e-6

    def __init__(self, provider, pressure, nPoints):
        self.provider = provider
        self.pressure = pressure
        K = provider.nSpecies
        N = nPoints
        self.T = np.full(N, np.nan)
        self.Y = np.full((K, N), np.nan)

        self.rho = np.zeros(N)
        self.cp = np.zeros(N)
        self.lam = np.zeros(N)
        self.Wmix = np.zeros(N)
        self.wdot = np.zeros((K, N))
        self.hk = np.zeros((K, N))
        self.cpk = np.zeros((K, N))
        self.D = np.zeros((K, N))
        self.mobility = np.zeros((K, N))

    def copy(self):
        other = FlowProperties.__new__(FlowProperties)
        for key, value in self.__dict__.items():
            if isinstance(value, np.ndarray):
                value = value.copy()
            other.__dict__[key] = value
        return other

    def update(self, T, Y):
        changed = (T != self.T) | np.any(Y != self.Y, axis=0)
        for j in np.flatnonzero(changed):
            self._evaluate(j, T[j], Y[:,j])

    def _evaluate(self, j, T, Y):
        if Y.min() < -self.negativeTolerance:
            k = int(np.argmin(Y))
            raise PropertyEvaluationError(
                'Negative mass fraction Y[{}] = {:.3e} at point {}'.format(
                    self.provider.speciesNames[k], Y[k], j))
        gas = self.provider
        gas.setState(T, self.pressure, Y)
        rho = gas.density()
        if not (np.isfinite(rho) and rho > 0):
            raise PropertyEvaluationError(
                'Unphysical density {!r} at point {} (T = {})'.format(rho, j, T))

        self.rho[j] = rho
        self.cp[j] = gas.cpMass()
        self.lam[j] = gas.thermalConductivity()
        self.Wmix[j] = gas.meanMolecularWeight()
        self.wdot[:,j] = gas.netProductionRates()
        self.hk[:,j] = gas.partialMolarEnthalpies()
        self.cpk[:,j] = gas.partialMolarCp()
        self.D[:,j] = gas.mixDiffCoeffs()
        self.mobility[:,j] = gas.mobilities()
        self.T[j] = T
        self.Y[:,j] = Y


class FlowAssembler(object):
    """
    Assembles the residual of the continuity, energy, species and
    electric-field equations for a :class:`~ionflame.domains.FreeFlow`
    domain.

    Convective terms are upwinded, diffusive fluxes are evaluated at the
    midpoints between grid points with mixture-averaged diffusion
    coefficients. In stage 2, charged species additionally drift in the
    electric field, which is obtained from Gauss's law.
    """
    def __init__(self, flow):
        self.flow = flow
        gas = flow.provider
        self.W = gas.molecularWeights[:, np.newaxis]
        self.charges = gas.charges
        self.kCharge = gas.chargedSpecies
        self.kNeutral = np.flatnonzero(gas.charges == 0)

    def chargeDensity(self, Y, rho):
        """ Space charge density [C/m^3] at each point """
        n = rho * np.sum(self.charges[:, np.newaxis] * Y / self.W, axis=0)
        return ct.electron_charge * ct.avogadro * n

    def diffusiveFlux(self, z, X, props):
        """
        Mass flux [kg/m^2/s] of each species at the midpoint of each
        interval, shape ``(nSpecies, nPoints - 1)``.
        """
        W = self.W
        dz = np.diff(z)
        Y = X[C_Y:]
        E = X[C_E]

        rho = 0.5 * (props.rho[:-1] + props.rho[1:])
        Wmix = 0.5 * (props.Wmix[:-1] + props.Wmix[1:])
        D = 0.5 * (props.D[:,:-1] + props.D[:,1:])
        Xmole = Y * props.Wmix / W
        flux = -rho * (W / Wmix) * D * np.diff(Xmole, axis=1) / dz

        kc = self.kCharge
        if not self.flow.fieldActive:
            # Without the field, fast charged species (electrons) would run
            # away from the ions, so their transport is frozen.
            flux[kc] = 0.0
        elif len(kc):
            # Drift is upwinded: the cell Peclet number e*E*dz/(kB*T) of the
            # drift term is large on coarse grids.
            mobility = 0.5 * (props.mobility[kc,:-1] + props.mobility[kc,1:])
            drift = self.charges[kc, np.newaxis] * mobility * E[:-1]
            Yc = np.where(drift > 0, Y[kc,:-1], Y[kc,1:])
            flux[kc] += rho * Yc * drift

        # Correction flux, carried by the neutral species only
        kn = self.kNeutral
        Yn = 0.5 * (Y[kn,:-1] + Y[kn,1:])
        flux[kn] -= Yn / np.sum(Yn, axis=0) * np.sum(flux, axis=0)
        return flux

    def residual(self, z, X, props, rdt=0.0, Xprev=None):
        """
        Residual of the steady equations (or of one implicit Euler step of
        size ``1/rdt`` from *Xprev* when *rdt* is non-zero).

        :param z:
            Grid positions
        :param X:
            Current state, shape ``(nComponents, nPoints)``
        :param props:
            :class:`FlowProperties` evaluated at *X*
        """
        flow = self.flow
        W = self.W
        N = len(z)
        dz = np.diff(z)
        u = X[C_U]
        T = X[C_T]
        E = X[C_E]
        Y = X[C_Y:]
        rho = props.rho
        rhou = rho * u
        rsd = np.zeros_like(X)

        flux = self.diffusiveFlux(z, X, props)

        # Continuity. Information propagates away from the fixed-temperature
        # point, where the equation is replaced by the temperature constraint.
        jf = flow.fixedIndex(z)
        rsd[C_U,:jf] = -(rhou[1:jf+1] - rhou[:jf]) / dz[:jf]
        rsd[C_U,jf] = T[jf] - flow.Tfixed
        rsd[C_U,jf+1:] = -(rhou[jf+1:] - rhou[jf:-1]) / dz[jf:]

        # Interior points
        upwind = u[1:-1] > 0
        def ddz(v):
            back = (v[...,1:-1] - v[...,:-2]) / dz[:-1]
            forward = (v[...,2:] - v[...,1:-1]) / dz[1:]
            return np.where(upwind, back, forward)

        span = z[2:] - z[:-2]
        dYdz = ddz(Y)
        dTdz = ddz(T)

        divFlux = 2.0 * (flux[:,1:] - flux[:,:-1]) / span
        rsd[C_Y:,1:-1] = ((W * props.wdot[:,1:-1] - rhou[1:-1] * dYdz - divFlux)
                          / rho[1:-1])

        lam = 0.5 * (props.lam[:-1] + props.lam[1:])
        conduction = 2.0 * (lam[1:] * (T[2:] - T[1:-1]) / dz[1:] -
                            lam[:-1] * (T[1:-1] - T[:-2]) / dz[:-1]) / span
        heatRelease = np.sum(props.wdot[:,1:-1] * props.hk[:,1:-1], axis=0)
        meanFlux = 0.5 * (flux[:,1:] + flux[:,:-1])
        enthalpyFlux = np.sum(meanFlux * props.cpk[:,1:-1] / W, axis=0) * dTdz
        rhocp = rho[1:-1] * props.cp[1:-1]
        rsd[C_T,1:-1] = (-rhocp * u[1:-1] * dTdz + conduction - heatRelease
                         - enthalpyFlux) / rhocp

        # Default boundary equations; the inlet and outlet domains modify
        # these through their boundary stitches.
        rsd[C_T,0] = T[0]
        rsd[C_T,-1] = T[-1]
        rsd[C_Y:,0] = -(flux[:,0] + rhou[0] * Y[:,0])
        rsd[C_Y:,-1] = flux[:,-1] + rhou[-1] * Y[:,-1]
        kx = C_Y + flow.excessSpecies
        rsd[kx,0] = 1.0 - np.sum(Y[:,0])
        rsd[kx,-1] = 1.0 - np.sum(Y[:,-1])

        # Electric field
        if flow.fieldActive:
            rsd[C_E,0] = E[0]
            rsd[C_E,1:] = np.diff(E) / dz - self.chargeDensity(Y, rho)[1:] / ct.epsilon_0
            # Charged species are subject to the field at the inlet as well,
            # so their boundary flux is not known there.
            kc = self.kCharge
            rsd[C_Y+kc,0] = Y[kc,0] - Y[kc,1]
        else:
            rsd[C_E] = E

        if rdt:
            diag = flow.diagonal(N)
            rsd[diag] -= rdt * (X[diag] - Xprev[diag])

        return rsd
