"""
The global nonlinear system formed by an inlet, a free-flow domain and an
outlet.

Unknowns are stored in one flat vector ordered as the inlet components,
then all components of flow point 0, flow point 1, ..., and finally the
outlet components. The residual vector has the same layout.
"""

import logging
import numpy as np
import scipy.sparse
import scipy.sparse.linalg

from .assembler import FlowProperties, C_T, C_Y
from .errors import InvalidInput, NewtonDivergence

_log = logging.getLogger(__name__)


def firstCrossing(z, T, Tfixed):
    """
    Position where the piecewise-linear profile *T(z)* first rises to
    *Tfixed*, or *None* if it never does.
    """
    T = np.asarray(T)
    above = T >= Tfixed
    j = np.flatnonzero(~above[:-1] & above[1:])
    if not len(j):
        return None
    j = j[0]
    return z[j] + (Tfixed - T[j]) * (z[j+1] - z[j]) / (T[j+1] - T[j])


def nearestFixedPoint(T, Tfixed):
    """
    Index of the interior point whose temperature is closest to *Tfixed*.
    If two points are equally close, the upstream (lower index) one is
    returned.
    """
    T = np.asarray(T)
    if len(T) < 3:
        raise InvalidInput('Holding the temperature fixed requires at least'
                           ' one interior grid point')
    return 1 + int(np.argmin(np.abs(T[1:-1] - Tfixed)))


class CompositeSystem(object):
    """
    Couples the :class:`~ionflame.domains.Inlet`,
    :class:`~ionflame.domains.FreeFlow` and :class:`~ionflame.domains.Outlet`
    domains on a shared :class:`~ionflame.grid.Grid` into a single system of
    equations *F(x) = 0*.

    The system owns the unknown vector :attr:`x` and the cached flow
    properties. Residuals and the Jacobian may also be evaluated at other
    states without modifying :attr:`x`.
    """
    #: Relative part of the finite difference perturbation
    relativePerturbation = 1e-5

    #: Absolute part of the finite difference perturbation
    absolutePerturbation = np.sqrt(np.finfo(float).eps)

    #: A point is not inserted at the fixed-temperature crossing if an
    #: existing point is closer than this fraction of the domain width.
    minInsertSpacing = 1e-6

    def __init__(self, inlet, flow, outlet, grid):
        self.inlet = inlet
        self.flow = flow
        self.outlet = outlet
        self.grid = grid
        grid.setRange(flow.name, 0, len(grid))

        self.nInlet = inlet.nComponents()
        self.nc = flow.nComponents()
        self.nOutlet = outlet.nComponents()

        X = np.zeros((self.nc, self.nPoints))
        self.x = np.concatenate([inlet.initialValues(), X.T.ravel(),
                                 outlet.initialValues()])
        self.props = FlowProperties(flow.provider, flow.pressure, self.nPoints)
        self.rdt = 0.0
        self.Xprev = None
        self._lu = None

    @property
    def nPoints(self):
        start, stop = self.grid.pointRange(self.flow.name)
        return stop - start

    @property
    def z(self):
        start, stop = self.grid.pointRange(self.flow.name)
        return self.grid.z[start:stop]

    @property
    def size(self):
        return self.nInlet + self.nc * self.nPoints + self.nOutlet

    def split(self, x):
        """
        Views of the inlet, flow and outlet parts of *x*. The flow part has
        shape ``(nComponents, nPoints)``.
        """
        n0 = self.nInlet
        n1 = n0 + self.nc * self.nPoints
        return x[:n0], x[n0:n1].reshape(self.nPoints, self.nc).T, x[n1:]

    @property
    def X(self):
        """ Flow-domain solution, shape ``(nComponents, nPoints)`` """
        return self.split(self.x)[1]

    @property
    def mdot(self):
        """ Mass flux through the flame [kg/m^2/s] """
        return self.x[self.inlet.componentIndex('mdot')]

    def componentName(self, i):
        """ Human readable name of entry *i* of the unknown vector """
        n0 = self.nInlet
        n1 = n0 + self.nc * self.nPoints
        if i < n0:
            return '{}.{}'.format(self.inlet.name, self.inlet.componentNames[i])
        elif i < n1:
            j, c = divmod(i - n0, self.nc)
            return '{}.{}[{}]'.format(self.flow.name,
                                      self.flow.componentNames[c], j)
        else:
            return '{}.{}'.format(self.outlet.name,
                                  self.outlet.componentNames[i - n1])

    def residual(self, x=None):
        """ Global residual vector evaluated at *x* (default: :attr:`x`) """
        if x is None:
            x = self.x
        xin, X, xout = self.split(x)
        self.props.update(X[C_T], X[C_Y:])

        rsd = self.flow.residual(self.z, X, self.props, self.rdt, self.Xprev)
        self.inlet.boundaryStitch(rsd, xin, X, self.flow)
        self.outlet.boundaryStitch(rsd, X, self.flow)

        return np.concatenate([self.inlet.residual(xin, X, self.props),
                               rsd.T.ravel(),
                               self.outlet.residual(xout, X, self.props)])

    def perturbation(self, values):
        return self.relativePerturbation * np.abs(values) + self.absolutePerturbation

    def jacobian(self, x=None):
        """
        Sparse (CSC) Jacobian of the residual, evaluated by forward
        differences.

        The residual at a flow point depends only on the unknowns at that
        point and its two neighbors, so each flow component is perturbed at
        every third point simultaneously. The inlet and outlet unknowns are
        perturbed one at a time.
        """
        if x is None:
            x = self.x
        x = np.array(x)
        n0 = self.nInlet
        nc = self.nc
        N = self.nPoints
        n = self.size
        n1 = n0 + nc * N

        r0 = self.residual(x)
        base = self.props.copy()
        rows = []
        cols = []
        values = []

        def addColumn(col, r, dx, rowIndex):
            rows.append(rowIndex)
            cols.append(np.full(len(rowIndex), col))
            values.append((r[rowIndex] - r0[rowIndex]) / dx)

        allRows = np.arange(n)
        for i in list(range(n0)) + list(range(n1, n)):
            xp = x.copy()
            xp[i] += self.perturbation(x[i])
            addColumn(i, self.residual(xp), xp[i] - x[i], allRows)

        for c in range(nc):
            # Only the temperature and composition enter the cached properties
            changesProperties = c == C_T or c >= C_Y
            for offset in range(3):
                points = np.arange(offset, N, 3)
                index = n0 + points * nc + c
                xp = x.copy()
                xp[index] += self.perturbation(x[index])
                dx = xp[index] - x[index]
                r = self.residual(xp)
                if changesProperties:
                    self.props = base.copy()

                for p, d in zip(points, dx):
                    lo = max(p - 1, 0)
                    hi = min(p + 2, N)
                    rowIndex = np.arange(n0 + lo * nc, n0 + hi * nc)
                    if p == 0:
                        rowIndex = np.concatenate([np.arange(n0), rowIndex])
                    if p == N - 1:
                        rowIndex = np.concatenate([rowIndex, np.arange(n1, n)])
                    addColumn(n0 + p * nc + c, r, d, rowIndex)

        self.props = base
        return scipy.sparse.csc_matrix(
            (np.concatenate(values), (np.concatenate(rows), np.concatenate(cols))),
            shape=(n, n))

    def factor(self, J):
        """ LU-factorize the Jacobian *J* for use by :meth:`solve`. """
        try:
            self._lu = scipy.sparse.linalg.splu(J)
        except RuntimeError as err:
            raise NewtonDivergence('Singular Jacobian: {}'.format(err))

    def solve(self, r):
        """ Solve *J dx = r* using the last factorized Jacobian. """
        dx = self._lu.solve(r)
        if not np.all(np.isfinite(dx)):
            raise NewtonDivergence('Newton step is not finite')
        return dx

    def weights(self, x=None):
        """
        Error weights of each unknown, ``rtol * mean|x| + atol``, where the
        mean is taken over all points of the domain for each component.
        """
        if x is None:
            x = self.x
        transient = self.rdt > 0
        xin, X, xout = self.split(x)
        rtol, atol = self.flow.tolerances(transient)
        wflow = rtol * np.mean(np.abs(X), axis=1) + atol
        rtol, atol = self.inlet.tolerances(transient)
        win = rtol * np.abs(xin) + atol
        rtol, atol = self.outlet.tolerances(transient)
        wout = rtol * np.abs(xout) + atol
        return np.concatenate([win, np.tile(wflow, self.nPoints), wout])

    def norm(self, step, x=None):
        """ Weighted RMS norm of a Newton *step* taken from *x* """
        return np.sqrt(np.mean((step / self.weights(x))**2))

    def bounds(self):
        N = self.nPoints
        lower = np.concatenate([self.inlet.lower, np.tile(self.flow.lower, N),
                                self.outlet.lower])
        upper = np.concatenate([self.inlet.upper, np.tile(self.flow.upper, N),
                                self.outlet.upper])
        return lower, upper

    def boundStep(self, x, step):
        """
        Largest fraction (at most 1) of *step* that can be added to *x*
        without taking any component that is within its bounds (including
        one that lies exactly on a bound) outside of them.
        """
        lower, upper = self.bounds()
        xnew = x + step
        below = (x >= lower) & (xnew < lower)
        above = (x <= upper) & (xnew > upper)
        fraction = np.ones(len(x))
        fraction[below] = (lower[below] - x[below]) / step[below]
        fraction[above] = (upper[above] - x[above]) / step[above]
        i = int(np.argmin(fraction))
        fbound = fraction[i]
        if fbound < 1.0:
            _log.debug('Step limited to fraction %.3e by bounds of %s',
                       fbound, self.componentName(i))
        return max(fbound, 0.0)

    def setTimeStep(self, dt):
        """
        Add the transient term of an implicit Euler step of size *dt* taken
        from the current solution. Returns *True* if the step size changed.
        """
        rdt = 1.0 / dt
        changed = rdt != self.rdt
        self.rdt = rdt
        self.Xprev = self.X.copy()
        return changed

    def setSteadyMode(self):
        self.rdt = 0.0
        self.Xprev = None

    def setInitialGuess(self, component, locations, values):
        """
        Set the flow profile of *component* by linear interpolation of
        *values* given at *locations* in the normalized coordinate
        ``(z - z[0]) / (z[-1] - z[0])``.
        """
        if len(locations) != len(values):
            raise InvalidInput('Initial guess for {!r} has {} locations but {}'
                               ' values'.format(component, len(locations),
                                                len(values)))
        c = self.flow.componentIndex(component)
        z = self.z
        s = (z - z[0]) / (z[-1] - z[0])
        self.X[c] = np.interp(s, locations, values)

    def setProfile(self, z, X, xin=None):
        """ Interpolate a complete flow solution given on grid *z*. """
        if X.shape[0] != self.nc:
            raise InvalidInput('Profile has {} components; expected {}'.format(
                X.shape[0], self.nc))
        self.X[:] = [np.interp(self.z, z, v) for v in X]
        if xin is not None:
            self.split(self.x)[0][:] = xin

    def setFixedTemperature(self, Tfixed):
        """
        Pin the flame at the point where the temperature equals *Tfixed*.
        If no grid point lies on the first crossing of *Tfixed*, a point is
        inserted there (if the grid has room). Returns the index of the
        fixed point.
        """
        z = self.z
        zc = firstCrossing(z, self.X[C_T], Tfixed)
        if (zc is not None and len(self.grid) < self.grid.maxPoints and
            np.min(np.abs(z - zc)) > self.minInsertSpacing * (z[-1] - z[0])):
            self.insertPoints([zc])

        j = nearestFixedPoint(self.X[C_T], Tfixed)
        self.flow.Tfixed = Tfixed
        self.flow.zFixed = self.z[j]
        _log.info('Fixed temperature T = %.2f K at z = %.6g m (point %i)',
                  Tfixed, self.flow.zFixed, j)
        return j

    def insertPoints(self, positions):
        zOld = self.z.copy()
        xOld = self.x.copy()
        added = self.grid.insert(positions)
        if len(added):
            self.interpolate(zOld, xOld)
        return added

    def refine(self, refiner):
        """
        Bisect the intervals flagged by *refiner* and re-seed the solution on
        the new grid. Returns the number of points added.
        """
        flow = self.flow
        intervals, reasons = refiner.analyze(self.z, self.X,
                                             flow.componentNames,
                                             flow.refineActive)
        if not len(intervals):
            _log.info('No new points needed in %s', flow.name)
            return 0

        _log.info('Refining grid in %s. New points inserted after grid points %s',
                  flow.name, ' '.join(str(j) for j in intervals))
        _log.info('    to resolve %s', ' '.join(sorted(reasons)))
        zOld = self.z.copy()
        xOld = self.x.copy()
        self.grid.bisect(intervals)
        self.interpolate(zOld, xOld)
        return len(intervals)

    def interpolate(self, zOld, xOld):
        """
        Re-seed the unknowns on the current grid by linear interpolation of
        the solution *xOld* defined on the grid *zOld*.
        """
        n0 = self.nInlet
        nc = self.nc
        nOld = len(zOld)
        XOld = xOld[n0:n0+nc*nOld].reshape(nOld, nc).T
        z = self.z
        X = np.array([np.interp(z, zOld, v) for v in XOld])
        self.x = np.concatenate([xOld[:n0], X.T.ravel(), xOld[n0+nc*nOld:]])
        self.props = FlowProperties(self.flow.provider, self.flow.pressure,
                                    len(z))
        self.setSteadyMode()
        self._lu = None

    def saveState(self):
        return self.x.copy()

    def restoreState(self, x):
        if len(x) != self.size:
            raise ValueError('Saved state does not match the current grid')
        self.x = x.copy()
