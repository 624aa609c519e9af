import unittest
import cantera as ct

from ionflame import *
from ionflame.test.toygas import ToyGas


class TestConfig(unittest.TestCase):
    def test_paths(self):
        c = Config(Paths(outputDir='dirname',
                         logFile='filename'))
        self.assertEqual(c.paths.outputDir, 'dirname')
        self.assertEqual(c.paths.logFile, 'filename')

    def test_bad_option_name(self):
        with self.assertRaises(KeyError):
            c = Config(Paths(doesNotExist='invalid'))

    def test_duplicate_group(self):
        with self.assertRaises(ValueError):
            Config(Paths(outputDir='a'), Paths(outputDir='b'))

    def test_zero_phi(self):
        with self.assertRaises(InvalidInput):
            InitialCondition(equivalenceRatio=0.0)

    def test_negative_phi(self):
        with self.assertRaises(InvalidInput):
            InitialCondition(equivalenceRatio=-0.5)

    def test_nan_phi(self):
        with self.assertRaises(InvalidInput):
            InitialCondition(equivalenceRatio=float('nan'))

    def test_bad_type(self):
        with self.assertRaises(InvalidInput):
            Grid(nPoints=2.5)
        with self.assertRaises(InvalidInput):
            General(refineGrid='yes')

    def test_missing_phi(self):
        c = Config(Chemistry(providerClass=ToyGas))
        with self.assertRaises(InvalidInput):
            c.evaluate()
        self.assertFalse(c.validate())
        with self.assertRaises(InvalidInput):
            c.run()

    def test_invalid_input_is_value_error(self):
        self.assertTrue(issubclass(InvalidInput, ValueError))
        self.assertEqual(InvalidInput.kind, FailureKind.INVALID_INPUT)

    def test_validate(self):
        c = Config(Chemistry(providerClass=ToyGas),
                   InitialCondition(equivalenceRatio=1.0,
                                    fuel='F:1', oxidizer='O:1, N:3'))
        self.assertTrue(c.validate())

    def test_validate_grid(self):
        c = Config(Chemistry(providerClass=ToyGas),
                   InitialCondition(equivalenceRatio=1.0,
                                    fuel='F:1', oxidizer='O:1, N:3'),
                   Grid(xLeft=0.1, xRight=0.0))
        self.assertFalse(c.validate())

    def test_validate_unknown_species(self):
        c = Config(Chemistry(providerClass=ToyGas),
                   InitialCondition(equivalenceRatio=1.0))
        self.assertFalse(c.validate())

    def test_unknown_command(self):
        c = Config(InitialCondition(equivalenceRatio=1.0))
        with self.assertRaises(ValueError):
            c.run('bogus')

    def test_concrete_values(self):
        c = Config(InitialCondition(equivalenceRatio=0.8),
                   ElectricField(eField=1e4))
        conf = c.evaluate()
        self.assertEqual(conf.initialCondition.equivalenceRatio, 0.8)
        self.assertEqual(conf.electricField.fields(), [1e4])
        self.assertTrue(conf.initialCondition.isSet('equivalenceRatio'))
        self.assertFalse(conf.initialCondition.isSet('Tu'))

    def test_sweep(self):
        c = Config(InitialCondition(equivalenceRatio=1.0),
                   ElectricField(eField=5.0, sweep=[0.0, 1e3, 1e4]))
        self.assertEqual(c.evaluate().electricField.fields(), [0.0, 1e3, 1e4])

    def test_stringify(self):
        c = Config(Chemistry(providerClass=ToyGas),
                   InitialCondition(equivalenceRatio=1.0))
        text = c.stringify()
        self.assertIn('equivalenceRatio=1.0', text)
        self.assertIn('ionflame.test.toygas.ToyGas', text)
        self.assertNotIn('Tu=', text)


class TestReactantStates(unittest.TestCase):
    def check(self, provider, fuel, oxidizer):
        for phi in (0.6, 0.8, 1.0, 1.2, 1.5):
            conf = Config(Chemistry(providerClass=provider),
                          InitialCondition(equivalenceRatio=phi,
                                           fuel=fuel,
                                           oxidizer=oxidizer)).evaluate()
            conf.createProvider()
            states = conf.reactantStates()
            self.assertGreater(states.Tad, conf.initialCondition.Tu)
            self.assertGreater(states.rhou, states.rhob)
            self.assertAlmostEqual(states.Yb.sum(), 1.0, 10)

    def test_toy_gas(self):
        self.check(ToyGas, 'F:1', 'O:1, N:3')

    def test_toy_gas_stoichiometric(self):
        conf = Config(Chemistry(providerClass=ToyGas),
                      InitialCondition(equivalenceRatio=1.0, fuel='F:1',
                                       oxidizer='O:1, N:3')).evaluate()
        conf.createProvider()
        states = conf.reactantStates()
        self.assertAlmostEqual(states.Yu[0], 0.2)
        self.assertAlmostEqual(states.Yu[3], 0.6)
        self.assertAlmostEqual(states.Tad, 300 + 0.2 / 30 * 3.32e8 / 1300, 6)

    def test_cantera(self):
        self.check(CanteraGas, 'CH4:1.0', 'O2:0.21, N2:0.79')


class FailingSolution(object):
    def __getattr__(self, name):
        raise ct.CanteraError('{} is not available'.format(name))

    def __setattr__(self, name, value):
        raise ct.CanteraError('{} cannot be set'.format(name))


class TestCanteraGas(unittest.TestCase):
    def test_properties(self):
        gas = CanteraGas('gri30_ion.yaml', 'gas')
        self.assertIn('E', gas.speciesNames)
        self.assertEqual(gas.charges[gas.speciesIndex('E')], -1)
        gas.setEquivalenceRatio(1.0, 'CH4:1.0', 'O2:0.21, N2:0.79')
        gas.setState(1500.0, ct.one_atm, gas.massFractions())
        mu = gas.mobilities()
        self.assertTrue(mu[gas.speciesIndex('E')] > 0)
        self.assertEqual(mu[gas.speciesIndex('CH4')], 0)

    def test_cantera_errors(self):
        gas = CanteraGas('gri30_ion.yaml', 'gas')
        gas.gas = FailingSolution()
        for method in (gas.temperature, gas.density, gas.cpMass,
                       gas.thermalConductivity, gas.partialMolarEnthalpies,
                       gas.netProductionRates, gas.mixDiffCoeffs):
            with self.assertRaises(PropertyEvaluationError):
                method()
        with self.assertRaises(PropertyEvaluationError):
            gas.setState(300.0, ct.one_atm, [1.0])

    def test_missing_mechanism(self):
        with self.assertRaises(PropertyEvaluationError):
            CanteraGas('no-such-mechanism.yaml', 'gas')
