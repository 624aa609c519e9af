import unittest
import numpy as np

from ionflame.errors import NewtonDivergence, PropertyEvaluationError
from ionflame.solver import DampedNewton, FlameSolver, SolveStage
from ionflame.utils import Struct


class ScalarSystem(object):
    """
    Uncoupled system ``dx/dt = f(x)`` with the interface used by
    :class:`DampedNewton` and :class:`FlameSolver`.
    """
    atol = 1e-9

    def __init__(self, f, dfdx, x0):
        self.f = f
        self.dfdx = dfdx
        self.x = np.array(x0, dtype=float)
        self.rdt = 0.0
        self.xprev = None
        self.J = None

    def residual(self, x):
        r = self.f(x)
        if self.rdt:
            r = r - self.rdt * (x - self.xprev)
        return r

    def jacobian(self, x):
        return self.dfdx(x) - self.rdt

    def factor(self, J):
        if np.any(J == 0):
            raise NewtonDivergence('Singular Jacobian')
        self.J = J

    def solve(self, r):
        dx = r / self.J
        if not np.all(np.isfinite(dx)):
            raise NewtonDivergence('Newton step is not finite')
        return dx

    def norm(self, step, x):
        return np.sqrt(np.mean(step**2)) / self.atol

    def boundStep(self, x, step):
        return 1.0

    def saveState(self):
        return self.x.copy()

    def restoreState(self, x):
        self.x = x.copy()

    def setTimeStep(self, dt):
        changed = 1.0 / dt != self.rdt
        self.rdt = 1.0 / dt
        self.xprev = self.x.copy()
        return changed

    def setSteadyMode(self):
        self.rdt = 0.0
        self.xprev = None


class TestDampedNewton(unittest.TestCase):
    def test_linear(self):
        A = np.array([2.0, 5.0, 0.5])
        b = np.array([1.0, -3.0, 4.0])
        system = ScalarSystem(lambda x: A * x - b, lambda x: A, np.zeros(3))
        newton = DampedNewton(system)
        self.assertEqual(newton.solve(), 1)
        self.assertEqual(newton.jacobianCount, 1)
        np.testing.assert_allclose(system.x, b / A)

    def test_quadratic(self):
        a = np.array([2.0, 9.0, 0.25])
        system = ScalarSystem(lambda x: x**2 - a, lambda x: 2 * x,
                              np.ones(3))
        newton = DampedNewton(system, maxJacobianAge=1)
        iterations = newton.solve()
        self.assertGreater(iterations, 1)
        np.testing.assert_allclose(system.x, np.sqrt(a), rtol=1e-8)

    def test_damping(self):
        # Undamped Newton diverges for arctan(x) when |x0| > 1.39
        system = ScalarSystem(np.arctan, lambda x: 1 / (1 + x**2),
                              np.array([3.0]))
        newton = DampedNewton(system, maxJacobianAge=1)
        newton.solve()
        self.assertAlmostEqual(system.x[0], 0.0, 6)

    def test_no_solution(self):
        system = ScalarSystem(lambda x: x**2 + 1, lambda x: 2 * x,
                              np.array([1.0]))
        newton = DampedNewton(system, maxJacobianAge=1, maxIterations=30)
        with self.assertRaises(NewtonDivergence):
            newton.solve()
        self.assertEqual(system.x[0], 1.0)


class TestTimeStepping(unittest.TestCase):
    def makeSolver(self, system, **times):
        opts = dict(initialTimestep=0.01, timestepCounts=[5, 10],
                    maximumTimestep=1.0, minimumTimestep=1e-12,
                    maxFallbackRounds=5)
        opts.update(times)
        solverOptions = Struct(maxJacobianAge=5, maxDampingSteps=1,
                               maxNewtonIterations=20,
                               maxFieldSubdivisions=2)
        return FlameSolver(system, Struct(**opts), solverOptions)

    def test_fallback(self):
        # Newton with a single damping step fails from x = 3 until time
        # stepping brings the solution closer to the root.
        system = ScalarSystem(lambda x: -np.arctan(x),
                              lambda x: -1 / (1 + x**2), np.array([3.0]))
        solver = self.makeSolver(system)
        with self.assertRaises(NewtonDivergence):
            solver.newton.solve()

        solver.newton.resetJacobian()
        solver.solveSteady()
        self.assertAlmostEqual(system.x[0], 0.0, 6)
        self.assertEqual(system.rdt, 0.0)

    def test_time_step(self):
        system = ScalarSystem(lambda x: -x, lambda x: -np.ones_like(x),
                              np.array([1.0]))
        solver = self.makeSolver(system)
        dt = solver.timeStep(4, 0.1)
        # Each implicit Euler step divides x by (1 + dt)
        expected = 1.0 / (1.1 * 1.15 * 1.225 * 1.3375)
        self.assertAlmostEqual(system.x[0], expected, 6)
        self.assertAlmostEqual(dt, 0.1 * 1.5**4)
        self.assertEqual(system.rdt, 0.0)

    def test_fallback_limit(self):
        system = ScalarSystem(lambda x: x**2 + 1, lambda x: 2 * x,
                              np.array([1.0]))
        solver = self.makeSolver(system, timestepCounts=[2],
                                 maxFallbackRounds=2)
        with self.assertRaises(NewtonDivergence):
            solver.solveSteady()
        self.assertEqual(system.rdt, 0.0)

    def test_unphysical_steady_state(self):
        # The steady Jacobian cannot be evaluated until time stepping has
        # brought the solution close to the root.
        class FragileSystem(ScalarSystem):
            def jacobian(self, x):
                if not self.rdt and np.any(np.abs(x) > 1):
                    raise PropertyEvaluationError('Unphysical state')
                return ScalarSystem.jacobian(self, x)

        system = FragileSystem(lambda x: -x, lambda x: -np.ones_like(x),
                               np.array([3.0]))
        solver = self.makeSolver(system)
        solver.solveSteady()
        self.assertAlmostEqual(system.x[0], 0.0, 6)
        self.assertEqual(system.rdt, 0.0)

    def test_unphysical_time_step(self):
        # Time steps longer than 0.07 lead to states where the properties
        # cannot be evaluated
        class FragileSystem(ScalarSystem):
            def jacobian(self, x):
                if self.rdt and 1.0 / self.rdt > 0.07:
                    raise PropertyEvaluationError('Unphysical state')
                return ScalarSystem.jacobian(self, x)

        system = FragileSystem(lambda x: -x, lambda x: -np.ones_like(x),
                               np.array([1.0]))
        solver = self.makeSolver(system)
        dt = solver.timeStep(4, 0.1)
        expected = 1.0 / (1.05 * 1.0375 * 1.05625 * 1.0421875)
        self.assertAlmostEqual(system.x[0], expected, 6)
        self.assertAlmostEqual(dt, 0.06328125)
        self.assertEqual(system.rdt, 0.0)


class TestDampingRejection(unittest.TestCase):
    def test_unphysical_trial_point(self):
        # The undamped first step from x = -3 lands at x = 9.5, where the
        # residual cannot be evaluated
        trials = []
        def f(x):
            trials.append(x[0])
            if np.any(x > 5):
                raise PropertyEvaluationError('Unphysical state')
            return np.arctan(x)

        system = ScalarSystem(f, lambda x: 1 / (1 + x**2), np.array([-3.0]))
        newton = DampedNewton(system, maxJacobianAge=1)
        newton.solve()
        self.assertAlmostEqual(system.x[0], 0.0, 6)
        self.assertGreater(max(trials), 5)


class FieldSystem(ScalarSystem):
    """
    Stand-in for the flame system whose stage 2 solve only converges if the
    applied field changes by at most *maxIncrement* from the last converged
    field.
    """
    def __init__(self, maxIncrement):
        ScalarSystem.__init__(self, None, None, np.zeros(1))
        self.maxIncrement = maxIncrement
        self.nPoints = 10
        self.flow = Struct(setStage=lambda stage: None)
        self.inlet = Struct(eField=0.0)
        self.inlet.setEField = lambda E: setattr(self.inlet, 'eField', E)


class FieldLimitedSolver(FlameSolver):
    def __init__(self, system, maxFieldSubdivisions):
        FlameSolver.__init__(self, system, Struct(),
                             Struct(maxJacobianAge=5, maxDampingSteps=1,
                                    maxNewtonIterations=20,
                                    maxFieldSubdivisions=maxFieldSubdivisions))
        self.solved = []

    def solveStage(self, stage, refine=True):
        self.stage = stage
        E = self.system.inlet.eField
        previous = self.eField or 0.0
        if abs(E - previous) > self.system.maxIncrement:
            self.system.x[0] = np.nan
            raise NewtonDivergence('Field increment too large')
        self.system.x[0] = E
        self.solved.append((E, refine))


class TestFieldContinuation(unittest.TestCase):
    def test_direct(self):
        solver = FieldLimitedSolver(FieldSystem(1e4), 3)
        solver.solveField(1e4)
        self.assertEqual(solver.solved, [(1e4, True)])
        self.assertEqual(solver.eField, 1e4)
        self.assertEqual(solver.stage, SolveStage.WITH_FIELD)

    def test_subdivision(self):
        system = FieldSystem(3e3)
        solver = FieldLimitedSolver(system, 6)
        solver.solveField(1e4)
        self.assertEqual(solver.solved, [(2.5e3, False), (4375.0, False),
                                         (7187.5, False), (1e4, True)])
        self.assertEqual(solver.eField, 1e4)
        self.assertEqual(system.x[0], 1e4)

    def test_continues_from_last_field(self):
        system = FieldSystem(3e3)
        solver = FieldLimitedSolver(system, 3)
        solver.solveField(2e3)
        solver.solveField(6e3)
        self.assertEqual(solver.solved, [(2e3, True), (4e3, False),
                                         (6e3, True)])

    def test_subdivision_limit(self):
        system = FieldSystem(1e3)
        solver = FieldLimitedSolver(system, 2)
        with self.assertRaises(NewtonDivergence):
            solver.solveField(1e4)
        self.assertEqual(solver.solved, [])
        self.assertEqual(solver.eField, None)
        # the state before the last attempt is restored
        self.assertEqual(system.x[0], 0.0)

    def test_zero_field(self):
        solver = FieldLimitedSolver(FieldSystem(-1.0), 3)
        with self.assertRaises(NewtonDivergence):
            solver.solveField(0.0)
        self.assertEqual(solver.solved, [])
