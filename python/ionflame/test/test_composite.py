import unittest
import numpy as np

from ionflame.assembler import C_U, C_T, C_E, C_Y
from ionflame.composite import firstCrossing, nearestFixedPoint
from ionflame.errors import InvalidInput
from ionflame.grid import Refiner
from ionflame.input import Config, General, Grid, InitialCondition
from ionflame.test.toygas import toyConfig


def checkJacobian(system):
    """
    Compare the colored Jacobian with one computed by perturbing each
    unknown separately.
    """
    x = system.x.copy()
    r0 = system.residual(x)
    Jd = np.zeros((system.size, system.size))
    for i in range(system.size):
        xp = x.copy()
        xp[i] += system.perturbation(x[i])
        Jd[:,i] = (system.residual(xp) - r0) / (xp[i] - x[i])

    J = system.jacobian(x).toarray()
    np.testing.assert_allclose(J, Jd, rtol=1e-6,
                               atol=1e-10 * np.abs(Jd).max())
    np.testing.assert_array_equal(system.residual(x), r0)


class TestFixedPoint(unittest.TestCase):
    def test_first_crossing(self):
        z = np.array([0.0, 1.0, 2.0, 3.0])
        T = np.array([300.0, 1000.0, 2000.0, 1200.0])
        self.assertAlmostEqual(firstCrossing(z, T, 1500.0), 1.5)
        self.assertAlmostEqual(firstCrossing(z, T, 1000.0), 1.0)
        self.assertIsNone(firstCrossing(z, T, 2500.0))

    def test_nearest(self):
        T = np.array([300.0, 800.0, 1500.0, 2000.0])
        self.assertEqual(nearestFixedPoint(T, 1400.0), 2)

    def test_tie(self):
        T = np.array([300.0, 1000.0, 1200.0, 2000.0])
        self.assertEqual(nearestFixedPoint(T, 1100.0), 1)

    def test_interior_only(self):
        T = np.array([1100.0, 500.0, 600.0, 1100.0])
        self.assertEqual(nearestFixedPoint(T, 1100.0), 2)

    def test_too_few_points(self):
        with self.assertRaises(InvalidInput):
            nearestFixedPoint(np.array([300.0, 2000.0]), 1000.0)


class TestCompositeSystem(unittest.TestCase):
    def setUp(self):
        self.conf = toyConfig(Grid(xRight=0.04, nPoints=8, maxPoints=400)).evaluate()
        self.system = self.conf.setup()

    def fix(self):
        self.system.setFixedTemperature(self.conf.fixedTemperature())

    def test_initial_guess(self):
        system = self.system
        states = self.conf.reactantStates()
        T = system.X[C_T]
        self.assertAlmostEqual(T[0], 300.0)
        self.assertAlmostEqual(T[-1], states.Tad)
        self.assertTrue(np.all(np.diff(T) >= 0))
        self.assertEqual(system.flow.excessSpecies, 3)
        self.assertTrue(np.all(system.X[C_E] == 0))
        np.testing.assert_allclose(system.X[C_Y:].sum(axis=0), 1.0)
        self.assertAlmostEqual(system.mdot, 0.3 * states.rhou)

    def test_layout(self):
        self.fix()
        system = self.system
        self.assertEqual(system.nPoints, 9)
        self.assertEqual(system.nc, 9)
        self.assertEqual(system.size, 2 + 9 * 9)
        xin, X, xout = system.split(system.x)
        self.assertEqual(xin.shape, (2,))
        self.assertEqual(X.shape, (9, 9))
        self.assertEqual(xout.shape, (0,))
        self.assertEqual(system.componentName(0), 'inlet.mdot')
        self.assertEqual(system.componentName(2), 'flow.velocity[0]')
        self.assertEqual(system.componentName(2 + 9 + 1), 'flow.T[1]')
        self.assertEqual(system.componentName(2 + 9 * 8 + 8), 'flow.E[8]')

    def test_fixed_temperature_inserted(self):
        self.fix()
        system = self.system
        self.assertEqual(len(system.grid), 9)
        j = system.flow.fixedIndex(system.z)
        self.assertEqual(j, 4)
        self.assertAlmostEqual(system.z[j], 0.02)
        self.assertAlmostEqual(system.X[C_T,j], system.flow.Tfixed)

    def test_fixed_temperature_full_grid(self):
        conf = toyConfig(Grid(xRight=0.04, nPoints=8, maxPoints=8)).evaluate()
        system = conf.setup()
        j = system.setFixedTemperature(1000.0)
        self.assertEqual(len(system.grid), 8)
        self.assertEqual(j, 3)
        self.assertEqual(system.flow.zFixed, system.z[3])

    def test_residual(self):
        self.fix()
        r = self.system.residual()
        self.assertEqual(r.shape, (self.system.size,))
        self.assertTrue(np.all(np.isfinite(r)))

        # Boundary conditions are satisfied by the initial guess
        xin, R, xout = self.system.split(r)
        np.testing.assert_allclose(xin, 0.0, atol=1e-12)
        self.assertAlmostEqual(R[C_T,0], 0.0)
        self.assertAlmostEqual(R[C_U,4], 0.0)
        np.testing.assert_allclose(R[C_E], 0.0)

    def test_transient_residual(self):
        self.fix()
        system = self.system
        r0 = system.residual()
        system.setTimeStep(1e-5)
        np.testing.assert_allclose(system.residual(), r0)
        x = system.x.copy()
        x[2 + 9 * 3 + C_T] += 1.0
        r1 = system.residual(x)
        system.setSteadyMode()
        r2 = system.residual(x)
        i = 2 + 9 * 3 + C_T
        self.assertAlmostEqual(r2[i] - r1[i], 1e5, 4)

    def checkJacobian(self):
        checkJacobian(self.system)

    def test_jacobian(self):
        self.fix()
        self.checkJacobian()

    def test_jacobian_with_field(self):
        self.fix()
        self.system.flow.setStage(2)
        self.system.inlet.setEField(1e3)
        self.system.X[C_E] = 1e3
        self.checkJacobian()

    def test_bound_step(self):
        self.fix()
        system = self.system
        x = system.x.copy()
        step = np.zeros_like(x)
        self.assertEqual(system.boundStep(x, step), 1.0)

        i = 2 + C_Y  # fuel at the first point
        step[i] = -1.0
        self.assertAlmostEqual(system.boundStep(x, step), x[i] + 1e-7)

        # Components that are already out of bounds do not limit the step
        step[i] = 0.0
        j = 2 + 9 + C_T
        x[j] = 100.0
        step[j] = -50.0
        self.assertEqual(system.boundStep(x, step), 1.0)

    def test_bound_step_on_bound(self):
        self.fix()
        system = self.system
        lower, upper = system.bounds()
        x = system.x.copy()
        step = np.zeros_like(x)

        # Product at the first point sits on its lower bound after a
        # previous step was limited
        i = 2 + C_Y + 2
        x[i] = lower[i]
        step[i] = -1e-5
        self.assertEqual(system.boundStep(x, step), 0.0)

        step[i] = 1e-5
        self.assertEqual(system.boundStep(x, step), 1.0)

        step[i] = -1e-5
        x[i] = lower[i] + 0.5e-5
        fraction = system.boundStep(x, step)
        self.assertAlmostEqual(fraction, 0.5)
        self.assertGreaterEqual(x[i] + fraction * step[i], lower[i] - 1e-20)

    def test_weights(self):
        self.fix()
        system = self.system
        w0 = system.weights()
        system.setTimeStep(1e-5)
        w1 = system.weights()
        system.setSteadyMode()
        self.assertEqual(len(w0), system.size)
        self.assertTrue(np.all(w1 <= w0))
        self.assertTrue(np.any(w1 < w0))
        self.assertAlmostEqual(system.norm(w0), 1.0)

    def test_refine(self):
        self.fix()
        system = self.system
        zOld = system.z.copy()
        XOld = system.X.copy()
        added = system.refine(Refiner(ratio=2, slope=0.1, curve=0.2))
        self.assertGreater(added, 0)
        self.assertEqual(system.nPoints, len(zOld) + added)
        self.assertTrue(np.all(np.diff(system.z) > 0))
        old = np.searchsorted(system.z, zOld)
        np.testing.assert_array_equal(system.z[old], zOld)
        np.testing.assert_allclose(system.X[:,old], XOld)
        self.assertEqual(system.flow.fixedIndex(system.z), old[4])
        self.assertEqual(len(system.residual()), system.size)


class TestCanteraSystem(unittest.TestCase):
    """ The default configuration, using ``gri30_ion.yaml`` """
    @classmethod
    def setUpClass(cls):
        cls.conf = Config(InitialCondition(equivalenceRatio=1.0),
                          Grid(nPoints=8),
                          General(loglevel=0)).evaluate()

    def setUp(self):
        self.system = self.conf.setup()
        self.system.setFixedTemperature(self.conf.fixedTemperature())

    def test_residual(self):
        system = self.system
        self.assertEqual(system.nPoints, 9)
        self.assertEqual(system.nc, 3 + system.flow.nSpecies)
        r = system.residual()
        self.assertTrue(np.all(np.isfinite(r)))
        xin, R, xout = system.split(r)
        np.testing.assert_allclose(xin, 0.0, atol=1e-12)
        np.testing.assert_allclose(R[C_E], 0.0)

    def test_jacobian(self):
        checkJacobian(self.system)

    def test_jacobian_with_field(self):
        self.system.flow.setStage(2)
        self.system.inlet.setEField(1e3)
        self.system.X[C_E] = 1e3
        checkJacobian(self.system)
