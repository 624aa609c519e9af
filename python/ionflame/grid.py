"""
Axial grid shared by the flow domains, and the criteria used to refine it.
"""

import logging
import numpy as np

from .errors import InvalidInput, RefinementLimitExceeded

_log = logging.getLogger(__name__)


class Grid(object):
    """
    Ordered arena of strictly increasing axial positions [m].

    Domains refer to the grid through index ranges (see :meth:`setRange`),
    never by holding the position array, so that an insertion only needs to
    reallocate the arena and recompute the ranges.

    :param points:
        Initial positions. Must be strictly increasing.
    :param maxPoints:
        Upper bound on the number of points. Inserting past this bound raises
        :class:`~ionflame.errors.RefinementLimitExceeded`.
    """
    def __init__(self, points, maxPoints=1000):
        z = np.array(points, dtype=float)
        if z.ndim != 1 or len(z) < 2:
            raise InvalidInput('A grid needs at least 2 points')
        if not np.all(np.isfinite(z)) or np.any(np.diff(z) <= 0):
            raise InvalidInput('Grid points must be finite and strictly increasing')
        if len(z) > maxPoints:
            raise RefinementLimitExceeded(
                'Grid has {} points, more than the maximum of {}'.format(
                    len(z), maxPoints))
        self._z = z
        self.maxPoints = maxPoints
        self._ranges = {}

    @property
    def z(self):
        return self._z

    @property
    def spacing(self):
        return np.diff(self._z)

    def __len__(self):
        return len(self._z)

    def setRange(self, name, start, stop):
        """ Assign the index range [*start*, *stop*) to the domain *name*. """
        self._ranges[name] = (start, stop)

    def pointRange(self, name):
        return self._ranges[name]

    def index(self, position):
        """ Index of the grid point located exactly at *position*. """
        j = np.flatnonzero(self._z == position)
        if not len(j):
            raise KeyError('No grid point at z = {!r}'.format(position))
        return int(j[0])

    def insert(self, positions):
        """
        Insert new points and return the indices they occupy in the enlarged
        grid. Positions that already exist are ignored.
        """
        positions = np.setdiff1d(np.asarray(positions, dtype=float), self._z)
        if not len(positions):
            return np.array([], dtype=int)
        if len(self._z) + len(positions) > self.maxPoints:
            raise RefinementLimitExceeded(
                'Adding {} points would exceed the maximum of {} grid'
                ' points'.format(len(positions), self.maxPoints))
        z = np.union1d(self._z, positions)
        if np.any(np.diff(z) <= 0):
            raise InvalidInput('Inserted points break grid monotonicity')

        # Rescale the stored ranges to the new arena. A range that spans the
        # whole grid keeps spanning it.
        n0 = len(self._z)
        for name, (start, stop) in self._ranges.items():
            start = int(np.searchsorted(z, self._z[start]))
            stop = len(z) if stop == n0 else int(np.searchsorted(z, self._z[stop-1])) + 1
            self._ranges[name] = (start, stop)

        self._z = z
        return np.searchsorted(z, positions)

    def bisect(self, intervals):
        """
        Insert the midpoint of each interval ``[z[j], z[j+1]]`` for *j* in
        *intervals*.
        """
        intervals = np.unique(np.asarray(intervals, dtype=int))
        if not len(intervals):
            return np.array([], dtype=int)
        if intervals[0] < 0 or intervals[-1] >= len(self._z) - 1:
            raise IndexError('Interval index out of range')
        z = self._z
        return self.insert(0.5 * (z[intervals] + z[intervals+1]))


class Refiner(object):
    """
    Decides where to add grid points, based on the converged solution.

    An interval is split when:

    - the change of any active component across it exceeds
      ``slope * (max - min)`` of that component;
    - the change of the component's slope across a pair of intervals exceeds
      ``curve * (max slope - min slope)``;
    - the ratio of its width to the width of a neighboring interval exceeds
      ``ratio``.

    Intervals narrower than ``2 * gridMin`` are never split.
    """
    #: Components whose range is smaller than this fraction of their maximum
    #: magnitude are ignored.
    minRange = 0.01

    #: Absolute threshold added to the allowed change of each component.
    threshold = np.sqrt(np.finfo(float).eps)

    def __init__(self, ratio=10.0, slope=0.08, curve=0.1, gridMin=1e-10):
        self.ratio = ratio
        self.slope = slope
        self.curve = curve
        self.gridMin = gridMin

    def analyze(self, z, values, names=None, active=None):
        """
        Return the sorted indices *j* of the intervals ``[z[j], z[j+1]]`` that
        need a new point, and a dict mapping the name of each component (or
        grid criterion) that triggered refinement to its intervals.

        :param z:
            Grid positions (length *N*)
        :param values:
            Solution values, shape *(nComponents, N)*
        :param names:
            Component names, used in the returned dict
        :param active:
            Boolean mask of the components to consider
        """
        z = np.asarray(z)
        values = np.atleast_2d(values)
        n = len(z)
        nv = values.shape[0]
        if names is None:
            names = [str(i) for i in range(nv)]
        if active is None:
            active = np.ones(nv, dtype=bool)

        dz = np.diff(z)
        loc = np.zeros(n-1, dtype=bool)
        reasons = {}

        def mark(name, intervals):
            if len(intervals):
                loc[intervals] = True
                reasons.setdefault(name, set()).update(int(j) for j in intervals)

        wide = dz >= 2 * self.gridMin
        for i in range(nv):
            if not active[i]:
                continue
            v = values[i]
            s = np.diff(v) / dz

            vmin, vmax = v.min(), v.max()
            aa = max(abs(vmax), abs(vmin))
            if vmax - vmin > self.minRange * aa:
                dmax = self.slope * (vmax - vmin) + self.threshold
                r = np.abs(np.diff(v)) / dmax
                mark(names[i], np.flatnonzero((r > 1.0) & wide))

            if n > 2:
                smin, smax = s.min(), s.max()
                ss = max(abs(smax), abs(smin))
                if smax - smin > self.minRange * ss:
                    dmax = self.curve * (smax - smin)
                    r = np.abs(np.diff(s)) / (dmax + self.threshold / dz[:-1])
                    j = np.flatnonzero((r > 1.0) & wide[:-1] & wide[1:])
                    mark(names[i], np.union1d(j, j+1))

        # Properties of the grid itself
        if n > 2:
            j = np.arange(1, n-1)
            mark('ratio', j[dz[j] > self.ratio * dz[j-1]])
            mark('ratio', j[dz[j] < dz[j-1] / self.ratio] - 1)

        return np.flatnonzero(loc), reasons
