"""
Damped Newton iteration, pseudo-time stepping and the two-stage continuation
used to solve a freely-propagating ion flame.
"""

import enum
import logging
import numpy as np

from .errors import (Failure, IonFlameError, NewtonDivergence,
                     PropertyEvaluationError)
from .output import ResultExtractor

_log = logging.getLogger(__name__)


class SolveStage(enum.IntEnum):
    NO_FIELD = 1  #: hydrodynamic / thermal solution with E = 0
    WITH_FIELD = 2  #: electric field and ion drift active


class DriverState(enum.Enum):
    INITIALIZING = 'initializing'
    NEWTON_ITERATING = 'Newton iterating'
    CONVERGED = 'converged'
    REFINING = 'refining'
    STAGE_ADVANCING = 'stage advancing'
    FAILED = 'failed'


class DampedNewton(object):
    """
    Damped Newton iteration for a :class:`~ionflame.composite.CompositeSystem`.

    Each iteration computes the undamped Newton step, limits it so that no
    unknown leaves its bounds, and then reduces it by factors of
    :attr:`dampFactor` until the Newton step from the new point is either
    converged (weighted norm < 1) or smaller than the original step. The
    factorized Jacobian is reused for up to *maxJacobianAge* iterations. If
    damping fails with an old Jacobian, the Jacobian is re-evaluated once
    before giving up. A trial point where the properties cannot be evaluated
    is rejected like one that does not reduce the step.

    :param system:
        Object providing ``x``, ``residual(x)``, ``jacobian(x)``,
        ``factor(J)``, ``solve(r)``, ``norm(step, x)`` and
        ``boundStep(x, step)``
    """
    dampFactor = np.sqrt(2.0)

    #: Newton fails if bounds allow less than this fraction of a step
    minBoundFactor = 1e-10

    def __init__(self, system, maxJacobianAge=10, maxDampingSteps=7,
                 maxIterations=100):
        self.system = system
        self.maxJacobianAge = maxJacobianAge
        self.maxDampingSteps = maxDampingSteps
        self.maxIterations = maxIterations
        self.jacobianAge = None
        self.jacobianCount = 0

    def resetJacobian(self):
        """ Force a new Jacobian at the next iteration. """
        self.jacobianAge = None

    def evaluateJacobian(self, x):
        self.system.factor(self.system.jacobian(x))
        self.jacobianAge = 0
        self.jacobianCount += 1

    def step(self, x):
        """ Undamped Newton step from *x*, using the current Jacobian """
        return -self.system.solve(self.system.residual(x))

    def solve(self):
        """
        Iterate from ``system.x`` until convergence, then store the converged
        solution in ``system.x`` and return the number of iterations. Raises
        :class:`~ionflame.errors.NewtonDivergence` on failure, leaving
        ``system.x`` unchanged.
        """
        system = self.system
        x = np.array(system.x)
        for i in range(1, self.maxIterations + 1):
            if self.jacobianAge is None or self.jacobianAge >= self.maxJacobianAge:
                self.evaluateJacobian(x)

            step0 = self.step(x)
            s0 = system.norm(step0, x)
            result = self.dampStep(x, step0, s0)
            if result is None:
                if self.jacobianAge == 0:
                    raise NewtonDivergence(
                        'Damped Newton iteration failed with a new Jacobian'
                        ' (iteration {}, |step| = {:.3e})'.format(i, s0))
                _log.debug('Damping failed; re-evaluating the Jacobian')
                self.resetJacobian()
                continue

            x, s1 = result
            self.jacobianAge += 1
            if s1 < 1.0:
                system.x = x
                _log.debug('Newton converged in %i iterations', i)
                return i

        raise NewtonDivergence('No convergence after {} Newton'
                               ' iterations'.format(self.maxIterations))

    def dampStep(self, x0, step0, s0):
        """
        Find a damped step from *x0* along *step0*. Returns the new point and
        the norm of the Newton step from it, or *None* if no acceptable step
        was found.
        """
        system = self.system
        fbound = system.boundStep(x0, step0)
        if fbound < self.minBoundFactor:
            _log.debug('Step fraction %.3e allowed by bounds is too small', fbound)
            return None

        damp = 1.0
        for m in range(self.maxDampingSteps):
            ff = fbound * damp
            x1 = x0 + ff * step0
            try:
                step1 = self.step(x1)
            except PropertyEvaluationError as err:
                _log.debug('    damping %i: factor %.3e, rejected: %s', m, ff, err)
                damp /= self.dampFactor
                continue

            s1 = system.norm(step1, x1)
            _log.debug('    damping %i: factor %.3e, |step0| = %.3e, |step1| = %.3e',
                       m, ff, s0, s1)
            if s1 < 1.0 or s1 < s0:
                return x1, s1
            damp /= self.dampFactor

        return None


class RunResult(object):
    """
    Outcome of :meth:`FlameSolver.run`.

    .. attribute:: stage1

        Converged stage 1 profile (see
        :meth:`~ionflame.output.ResultExtractor.profile`), or *None*

    .. attribute:: fields

        Applied field strengths [V/m], one per stage 2 solve

    .. attribute:: gapVoltages

        Gap voltage [V] for each of :attr:`fields`; NaN for the fields whose
        solve failed or was not attempted

    .. attribute:: profiles

        Converged stage 2 profile for each successful field

    .. attribute:: failure

        A :class:`~ionflame.errors.Failure`, or *None* if every stage
        converged
    """
    def __init__(self):
        self.stage1 = None
        self.fields = []
        self.gapVoltages = []
        self.profiles = []
        self.failure = None
        self.adiabaticTemperature = None

    @property
    def converged(self):
        return self.failure is None

    @property
    def lastProfile(self):
        """ The most recent converged profile of either stage """
        if self.profiles:
            return self.profiles[-1]
        return self.stage1

    def __repr__(self):
        return 'RunResult(fields=%r, gapVoltages=%r, failure=%r)' % (
            self.fields, self.gapVoltages, self.failure)


class FlameSolver(object):
    """
    Drives a :class:`~ionflame.composite.CompositeSystem` through the solve
    stages: stage 1 without the electric field, then stage 2 with the field
    for each requested field strength.

    Within a stage, the steady problem is solved by Newton iteration. When
    Newton fails, a number of implicit time steps are taken to bring the
    solution closer to the steady state before trying again. After each
    converged solve the grid is refined, until the refinement criteria are
    satisfied.

    :param system:
        The composite system, with the initial guess already set
    :param times:
        Time stepping parameters (the ``Times`` options group)
    :param solverOptions:
        Newton parameters (the ``Solver`` options group)
    :param refiner:
        A :class:`~ionflame.grid.Refiner`, or *None* to keep the initial grid

    If the stage 2 solve for a field strength fails, the field is approached
    through intermediate values, halving the remaining increment after each
    failure, up to ``solverOptions.maxFieldSubdivisions`` times.
    """
    def __init__(self, system, times, solverOptions, refiner=None):
        self.system = system
        self.times = times
        self.refiner = refiner
        self.maxFieldSubdivisions = solverOptions.maxFieldSubdivisions
        self.newton = DampedNewton(system,
                                   maxJacobianAge=solverOptions.maxJacobianAge,
                                   maxDampingSteps=solverOptions.maxDampingSteps,
                                   maxIterations=solverOptions.maxNewtonIterations)
        self.extractor = ResultExtractor(system)
        self.state = DriverState.INITIALIZING
        self.stage = SolveStage.NO_FIELD
        self.lastConverged = None
        self.eField = None  #: field of the current stage 2 solution

    def setState(self, state):
        if state != self.state:
            _log.debug('Solver state: %s -> %s', self.state.value, state.value)
        self.state = state

    def initialize(self, Tfixed):
        """ Place the fixed-temperature point and select stage 1. """
        self.setState(DriverState.INITIALIZING)
        self.stage = SolveStage.NO_FIELD
        self.eField = None
        self.system.flow.setStage(SolveStage.NO_FIELD)
        self.system.setFixedTemperature(Tfixed)
        self.newton.resetJacobian()

    def run(self, fields=(0.0,)):
        """
        Solve stage 1, then stage 2 for each field strength in *fields* in
        sequence, each continuing from the previous converged solution.
        Failures are returned in the :class:`RunResult`, not raised.
        """
        fields = list(fields)
        result = RunResult()
        try:
            self.solveStage(SolveStage.NO_FIELD)
        except IonFlameError as err:
            result.failure = self.fail(err)
            result.fields = fields
            result.gapVoltages = [np.nan] * len(fields)
            return result

        self.eField = None
        result.stage1 = self.lastConverged
        for i, eField in enumerate(fields):
            try:
                self.solveField(eField)
            except IonFlameError as err:
                result.failure = self.fail(err)
                result.fields.extend(fields[i:])
                result.gapVoltages.extend([np.nan] * (len(fields) - i))
                break

            V = self.extractor.gapVoltage()
            _log.info('Electric field: %g V/m, gap voltage: %.6g V', eField, V)
            result.fields.append(eField)
            result.gapVoltages.append(V)
            result.profiles.append(self.lastConverged)

        if result.failure is None:
            self.setState(DriverState.CONVERGED)
        return result

    def advance(self, eField):
        """ Activate the electric field equations with applied field *eField*. """
        self.setState(DriverState.STAGE_ADVANCING)
        self.stage = SolveStage.WITH_FIELD
        self.system.flow.setStage(SolveStage.WITH_FIELD)
        self.system.inlet.setEField(eField)
        self.newton.resetJacobian()

    def solveField(self, eField):
        """
        Solve stage 2 with applied field *eField*, starting from the current
        solution. When the solve fails before the grid has been refined, the
        solution is restored and an intermediate field is solved first
        (without refinement).
        """
        system = self.system
        base = 0.0 if self.eField is None else self.eField
        fraction = 1.0
        subdivisions = 0
        while True:
            trial = base + fraction * (eField - base)
            final = fraction == 1.0
            saved = system.saveState()
            nPoints = system.nPoints
            self.advance(trial)
            try:
                self.solveStage(SolveStage.WITH_FIELD, refine=final)
            except NewtonDivergence as err:
                if system.nPoints != nPoints:
                    raise
                system.restoreState(saved)
                if subdivisions >= self.maxFieldSubdivisions or trial == base:
                    raise
                subdivisions += 1
                fraction *= 0.5
                _log.info('Stage 2 failed at E = %g V/m (%s); trying'
                          ' E = %g V/m', trial, err,
                          base + fraction * (eField - base))
                continue

            self.eField = trial
            if final:
                return
            base = trial
            fraction = 1.0

    def solveStage(self, stage, refine=True):
        """
        Solve on the current grid, refining until no points are added. If
        *refine* is *False*, only the current grid is used.
        """
        self.stage = stage
        system = self.system
        system.flow.setStage(stage)
        # The grid may have changed since the last factorization
        self.newton.resetJacobian()
        while True:
            self.setState(DriverState.NEWTON_ITERATING)
            self.solveSteady()
            self.setState(DriverState.CONVERGED)
            self.lastConverged = self.extractor.profile()
            _log.info('Stage %i converged on %i points: mdot = %.6g kg/m^2/s,'
                      ' flame speed = %.6g m/s', int(stage), system.nPoints,
                      self.lastConverged.mdot, self.lastConverged.flameSpeed)

            if self.refiner is None or not refine:
                return
            self.setState(DriverState.REFINING)
            if not system.refine(self.refiner):
                return
            self.newton.resetJacobian()

    def solveSteady(self):
        """
        Solve the steady problem on the current grid, falling back to time
        stepping whenever Newton fails. Trial points where the properties
        cannot be evaluated count as Newton failures; only a failure at the
        starting point is fatal.
        """
        times = self.times
        system = self.system
        dt = times.initialTimestep
        rounds = 0
        while True:
            saved = system.saveState()
            system.residual(system.x)
            try:
                iterations = self.newton.solve()
                _log.info('Steady solve converged in %i Newton iterations',
                          iterations)
                return
            except (NewtonDivergence, PropertyEvaluationError) as err:
                system.restoreState(saved)
                self.newton.resetJacobian()
                rounds += 1
                if rounds > times.maxFallbackRounds:
                    raise NewtonDivergence(
                        'Steady solve failed after {} rounds of time'
                        ' stepping: {}'.format(times.maxFallbackRounds, err))
                counts = times.timestepCounts
                nSteps = counts[min(rounds, len(counts)) - 1]
                _log.info('Steady Newton failed (%s); taking %i time steps'
                          ' with dt = %.3e', err, nSteps, dt)

            dt = self.timeStep(nSteps, dt)

    def timeStep(self, nSteps, dt):
        """
        Take *nSteps* implicit Euler steps, starting with step size *dt*.
        The step size grows after steps that converge quickly and is halved
        after failed steps. Returns the final step size.
        """
        times = self.times
        system = self.system
        n = 0
        try:
            while n < nSteps:
                saved = system.saveState()
                if system.setTimeStep(dt):
                    self.newton.resetJacobian()
                try:
                    iterations = self.newton.solve()
                except (NewtonDivergence, PropertyEvaluationError) as err:
                    system.restoreState(saved)
                    self.newton.resetJacobian()
                    dt *= 0.5
                    _log.debug('Time step failed (%s); reducing dt to %.3e',
                               err, dt)
                    if dt < times.minimumTimestep:
                        raise NewtonDivergence(
                            'Time step fell below the minimum of'
                            ' {:.3e} s'.format(times.minimumTimestep))
                    continue

                n += 1
                _log.debug('Time step %i: dt = %.3e, %i Newton iterations',
                           n, dt, iterations)
                if iterations <= 3:
                    dt = min(1.5 * dt, times.maximumTimestep)
        finally:
            system.setSteadyMode()
            self.newton.resetJacobian()

        return dt

    def fail(self, err):
        self.setState(DriverState.FAILED)
        _log.error('Stage %i failed (%s): %s', int(self.stage), err.kind.value, err)
        return Failure(err.kind, self.stage, str(err), self.lastConverged)
