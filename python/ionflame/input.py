"""
A set of classes for specifying input parameters for the ion flame solver.

Create a :class:`.Config` object and call its :meth:`~Config.run` method.
Sane defaults are given for most input parameters; the equivalence ratio
must always be given. Create a customized configuration by passing
:class:`.Options` objects to the constructor for :class:`.Config`::

    conf = Config(
        Paths(outputDir="phi1.0_eField1e4"),
        InitialCondition(equivalenceRatio=1.0),
        ElectricField(eField=1e4))
"""

import copy
import logging
import numbers
import os
import sys
import time
import numpy as np

from . import utils
from . import output
from .composite import CompositeSystem
from .domains import Inlet, FreeFlow, Outlet
from .errors import InvalidInput, IonFlameError, PropertyEvaluationError
from .grid import Grid as _Grid, Refiner
from .providers import CanteraGas
from .solver import FlameSolver

_log = logging.getLogger(__name__)


class Option(object):
    """
    Instances of this class are used as class members of descendants of class
    :class:`Options` to represent a single configurable value. When a
    user-specified value for an option is specified (as a keyword argument to
    the constructor of a class derived from :class:`Options`), that value is
    stored in this object and validated to make sure it satisfies any
    applicable constraints.

    :param default:
        The default value for this option
    :param choices:
        A sequence of valid values for this option, e.g. ``['h5', 'npz']``.
        The *default* choice is automatically included in *choices*.
    :param min:
        The minimum valid value for this option
    :param max:
        The maximum valid value for this option
    :param exclusiveMin:
        Valid values must be strictly greater than this value
    :param nullable:
        Set to *True* if *None* is a valid value for this option, regardless
        of any other restrictions. Automatically set to *True* if *default* is
        *None* and the option is not *required*.
    :param required:
        Set to *True* if a value must be given for this option. A required
        option that is not set makes the configuration invalid.

    Requiring values of a particular type is done by using one of the derived
    classes: :class:`StringOption`, :class:`BoolOption`, :class:`IntegerOption`,
    :class:`FloatOption`.
    """
    counter = [0]  # used to preserve options in the order they are defined

    def __init__(self, default, choices=None, min=None, max=None,
                 exclusiveMin=None, nullable=False, required=False):
        self.value = default
        self.default = default
        if choices:
            self.choices = set(choices)
            self.choices.add(default)
        else:
            self.choices = None

        self.min = min
        self.max = max
        self.exclusiveMin = exclusiveMin
        self.isSet = False
        self.required = required
        self.nullable = nullable or (self.default is None and not required)
        self.sortValue = self.counter[0]
        self.counter[0] += 1

    def validate(self):
        if self.value is None:
            if self.nullable:
                return None
            elif self.required:
                return 'A value is required'

        if self.choices and self.value not in self.choices:
            return '%r not in %r' % (self.value, list(self.choices))

        if self.min is not None and self.value < self.min:
            return ('Value (%s) must be greater than or equal to %s' %
                    (self.value, self.min))

        if self.exclusiveMin is not None and not self.value > self.exclusiveMin:
            return ('Value (%s) must be greater than %s' %
                    (self.value, self.exclusiveMin))

        if self.max is not None and self.value > self.max:
            return ('Value (%s) must be less than or equal to %s' %
                    (self.value, self.max))

    def __repr__(self):
        return repr(self.value)

    def __bool__(self):
        return bool(self.value)

    def __eq__(self, other):
        try:
            return self.value == other.value
        except AttributeError:
            return self.value == other


class StringOption(Option):
    """ An option whose value must be a string. """
    def validate(self):
        if not (isinstance(self.value, str) or
                (self.value is None and (self.nullable or self.required))):
            return 'Value must be a string. Got %r' % self.value
        return Option.validate(self)


class BoolOption(Option):
    """ An option whose value must be a boolean value. """
    def validate(self):
        if not (self.value in (True, False, 0, 1) or
                (self.value is None and (self.nullable or self.required))):
            return 'Value must be a boolean. Got %r' % self.value
        return Option.validate(self)


class IntegerOption(Option):
    """ An option whose value must be a integer. """
    def validate(self):
        if not (isinstance(self.value, numbers.Integral) or
                (self.value is None and (self.nullable or self.required))):
            return 'Value must be an integer. Got %r' % self.value
        return Option.validate(self)


class FloatOption(Option):
    """ An option whose value must be a floating point number. """
    def validate(self):
        if self.value is None:
            if not (self.nullable or self.required):
                return 'Value must be a number. Got None'
        elif not isinstance(self.value, numbers.Real) or np.isnan(self.value):
            return 'Value must be a number. Got %r' % self.value
        return Option.validate(self)


class Options(object):
    """ Base class for elements of :class:`.Config` """
    def __init__(self, **kwargs):
        # Copy the defaults from the class's dictionary
        for name,value in self.__class__.__dict__.items():
            if isinstance(value, Option):
                setattr(self, name, copy.deepcopy(value))

        # Apply the options specified in kwargs
        for key,value in kwargs.items():
            if hasattr(self, key):
                opt = getattr(self, key)
                if isinstance(opt, Option):
                    opt.value = value
                    opt.isSet = True
                    message = opt.validate()
                    if message:
                        raise InvalidInput('\nInvalid option specified for %s.%s:\n%s' %
                                           (self.__class__.__name__, key, message))
                else:
                    setattr(self, key, value)
            else:
                raise KeyError('Unrecognized configuration option: %s' % key)

    def _stringify(self, indent=0):
        ans = []
        spaces = None
        for attr in dir(self):
            if attr.startswith('_') or attr == 'isSet':
                continue

            value = getattr(self, attr)
            if isinstance(value, Option):
                if type(value.value) == type(value.default) and value.value == value.default:
                    continue
                else:
                    value = value.value
            else:
                continue

            if isinstance(value, type):
                value = '%s.%s' % (value.__module__, value.__name__)
            elif not isinstance(value, numbers.Number):
                value = repr(value)

            if not spaces:
                header = ' '*indent + self.__class__.__name__ + '('
                spaces = ' '*len(header)

            else:
                header = spaces

            ans.append('%s%s=%s,' % (header, attr, value))

        if ans:
            ans[-1] = ans[-1][:-1] + ')'
        else:
            ans = ''

        return ans

    def __iter__(self):
        allOpts = [item for item in self.__dict__.items()
                   if isinstance(item[1], Option)]
        allOpts.sort(key=lambda item: item[1].sortValue)
        return allOpts.__iter__()

    def isSet(self, option):
        """ Returns True if the named option has a user-specified value """
        try:
            return getattr(self.original, option).isSet
        except AttributeError:
            return getattr(self, option).isSet


# Use HDF5 if h5py is available, otherwise default to npz
try:
    import h5py
    dynamicDefaultFileExtension = StringOption('h5', ('npz',))
except ImportError:
    dynamicDefaultFileExtension = StringOption('npz', ('h5',))


class Paths(Options):
    """ Directories for input and output files """

    #: Relative path to the directory where output files (CSV tables and
    #: the solution snapshot) will be stored. Automatically created if it
    #: doesn't already exist.
    outputDir = StringOption("run/test1")

    #: File to use for log messages. If *None*, write output to stdout
    logFile = StringOption(None)


class General(Options):
    """ High-level configuration options """

    #: Refine the grid after each converged solution until the refinement
    #: criteria in :class:`Grid` are satisfied.
    refineGrid = BoolOption(True)

    #: Verbosity of the log. 0 shows only warnings and errors, 1 shows the
    #: progress of each solve, 2 or more shows every Newton iteration.
    loglevel = IntegerOption(1, min=0)

    #: Temperature [K] held fixed to pin the flame. If *None*, the mean of
    #: the unburned and adiabatic flame temperatures is used.
    fixedTemperature = FloatOption(None, exclusiveMin=0)


class Chemistry(Options):
    """ Settings pertaining to the mechanism and the property provider """

    #: Path to the Cantera input file. Must contain charged species.
    mechanismFile = StringOption("gri30_ion.yaml")

    #: ID of the phase to use in the mechanism file.
    phaseID = StringOption("gas")

    #: Transport model to use. *None* selects the default model of the
    #: phase, which for ``gri30_ion.yaml`` is ``ionized-gas``.
    transportModel = StringOption(None)

    #: Class used to evaluate thermodynamic, kinetic and transport
    #: properties. Called as ``providerClass(mechanismFile, phaseID,
    #: transportModel)`` and must implement
    #: :class:`~ionflame.providers.PropertyProvider`.
    providerClass = Option(CanteraGas)


class Grid(Options):
    """ Parameters of the initial grid and the grid refinement criteria """

    #: Number of points in the initial, uniform grid
    nPoints = IntegerOption(6, min=3)

    #: Position of the inlet [m]
    xLeft = FloatOption(0.0)

    #: Position of the outlet [m]
    xRight = FloatOption(0.1)

    #: Maximum ratio of the widths of adjacent grid intervals
    ratio = FloatOption(10.0, exclusiveMin=1)

    #: Maximum change of each solution component between adjacent points,
    #: relative to the range of that component
    slope = FloatOption(0.08, exclusiveMin=0, max=1)

    #: Maximum change of the slope of each solution component between
    #: adjacent intervals, relative to the range of the slope
    curve = FloatOption(0.1, exclusiveMin=0, max=1)

    #: Intervals narrower than twice this width [m] are never split
    gridMin = FloatOption(1e-10, exclusiveMin=0)

    #: The solve fails if refinement would grow the grid beyond this number
    #: of points.
    maxPoints = IntegerOption(1000, min=3)


class InitialCondition(Options):
    """ Settings controlling the reactants and the initial guess """

    #: Molar composition of the fuel
    fuel = StringOption('CH4:1.0')

    #: Molar composition of the oxidizer
    oxidizer = StringOption('O2:0.21, N2:0.79')

    #: Equivalence ratio of the unburned mixture. Required.
    equivalenceRatio = FloatOption(None, exclusiveMin=0, required=True)

    #: Temperature of the unburned mixture [K]
    Tu = FloatOption(300.0, exclusiveMin=0)

    #: Thermodynamic pressure [Pa]
    pressure = FloatOption(101325.0, exclusiveMin=0)

    #: Initial guess of the velocity of the unburned gas [m/s]
    velocity = FloatOption(0.3, exclusiveMin=0)

    #: Locations (normalized to [0, 1]) of the control points of the
    #: piecewise-linear initial guess. The first two points carry the
    #: unburned state and the last two the equilibrium state.
    guessLocations = Option([0.0, 0.3, 0.7, 1.0])

    #: Solution snapshot (.h5 or .npz) used as the initial guess instead of
    #: the generated profile.
    restartFile = StringOption(None)


class ElectricField(Options):
    """ The field applied at the inlet in stage 2 """

    #: Field strength [V/m]
    eField = FloatOption(0.0)

    #: Sequence of field strengths [V/m] to solve for in stage 2, each
    #: starting from the solution for the previous one. Replaces *eField*
    #: if given.
    sweep = Option(None)

    def fields(self):
        sweep = self.sweep.value if isinstance(self.sweep, Option) else self.sweep
        eField = self.eField.value if isinstance(self.eField, Option) else self.eField
        return list(sweep) if sweep else [eField]


class Tolerances(Options):
    """ Tolerances of the Newton iteration """

    #: Relative tolerance for steady-state solves
    steadyRelative = FloatOption(1e-4, exclusiveMin=0)

    #: Absolute tolerance for steady-state solves
    steadyAbsolute = FloatOption(1e-9, exclusiveMin=0)

    #: Relative tolerance for time steps
    transientRelative = FloatOption(1e-4, exclusiveMin=0)

    #: Absolute tolerance for time steps
    transientAbsolute = FloatOption(1e-11, exclusiveMin=0)

    #: Per-species tolerances, as a dict mapping species names to
    #: ``(steadyRelative, steadyAbsolute, transientRelative,
    #: transientAbsolute)``. Species not present in the mechanism are
    #: ignored.
    species = Option({'E': (1e-5, 1e-16, 1e-5, 1e-18),
                      'HCO+': (1e-5, 1e-16, 1e-5, 1e-18),
                      'H3O+': (1e-5, 1e-13, 1e-5, 1e-15)})


class Times(Options):
    """ Parameters of the time stepping used when Newton iteration fails """

    #: Size of the first time step [s]
    initialTimestep = FloatOption(1e-5, exclusiveMin=0)

    #: Number of time steps to take after each failed Newton solve. The last
    #: entry is used for all further attempts.
    timestepCounts = Option([10, 20, 80])

    #: Largest allowed time step [s]
    maximumTimestep = FloatOption(0.08, exclusiveMin=0)

    #: Time integration fails if the step size falls below this value [s]
    minimumTimestep = FloatOption(1e-16, exclusiveMin=0)

    #: Number of rounds of time stepping after which a steady solve that
    #: still fails is abandoned.
    maxFallbackRounds = IntegerOption(20, min=1)


class Solver(Options):
    """ Parameters of the damped Newton solver """

    #: Number of Newton iterations a Jacobian is reused for
    maxJacobianAge = IntegerOption(10, min=1)

    #: Maximum number of times a step is reduced by a factor of sqrt(2)
    maxDampingSteps = IntegerOption(7, min=1)

    #: Maximum number of iterations in a single Newton solve
    maxNewtonIterations = IntegerOption(100, min=1)

    #: Number of times the increment of the applied field is halved when
    #: the stage 2 solve for a field strength fails
    maxFieldSubdivisions = IntegerOption(6, min=0)


class OutputFiles(Options):
    """ Control the contents of the output files """

    #: File type for the solution snapshot. Either ``h5`` or ``npz``.
    fileExtension = dynamicDefaultFileExtension

    #: Save the converged solution so that it can be used as a restart file
    saveSnapshot = BoolOption(True)


class Config(object):
    """
    An object consisting of a set of Options objects which define a
    complete set of configuration options needed to run the flame
    solver.
    """
    def __init__(self, *args):
        opts = {}
        for arg in args:
            if not isinstance(arg, Options):
                raise TypeError('%r is not an instance of class Options' % arg)
            name = arg.__class__.__name__
            if name in opts:
                raise ValueError('Multiple instances of class %r encountered' % name)
            opts[name] = arg

        get = lambda cls: opts.get(cls.__name__) or cls()

        self.paths = get(Paths)
        self.general = get(General)
        self.chemistry = get(Chemistry)
        self.grid = get(Grid)
        self.initialCondition = get(InitialCondition)
        self.electricField = get(ElectricField)
        self.tolerances = get(Tolerances)
        self.times = get(Times)
        self.solver = get(Solver)
        self.outputFiles = get(OutputFiles)

    def evaluate(self):
        return ConcreteConfig(self)

    def __iter__(self):
        for item in self.__dict__.values():
            if isinstance(item, Options):
                yield item

    def stringify(self):
        ans = []
        for item in self:
            text = '\n'.join(item._stringify(4))
            if text:
                ans.append(text)

        return 'conf = Config(\n' + ',\n'.join(ans) + ')\n'

    def validate(self):
        """
        Check the configuration for errors. Prints a description of each
        problem found, and returns *True* if there were none.
        """
        error = False
        IC = self.initialCondition
        grid = self.grid
        times = self.times

        # Options which must be specified
        for group in self:
            for name, opt in group:
                if opt.required and opt.value is None:
                    error = True
                    print("Error: '%s.%s' must be specified." %
                          (group.__class__.__name__, name))

        if grid.xRight.value <= grid.xLeft.value:
            error = True
            print("Error: 'Grid.xRight' must be greater than 'Grid.xLeft'.")

        if grid.nPoints.value > grid.maxPoints.value:
            error = True
            print("Error: 'Grid.nPoints' exceeds 'Grid.maxPoints'.")

        locs = np.asarray(IC.guessLocations.value, dtype=float)
        if (len(locs) < 4 or locs[0] != 0.0 or locs[-1] != 1.0 or
            np.any(np.diff(locs) <= 0)):
            error = True
            print("Error: 'InitialCondition.guessLocations' must contain at"
                  " least 4 increasing values from 0 to 1.")

        counts = times.timestepCounts.value
        if not counts or any(not isinstance(n, numbers.Integral) or n < 1
                             for n in counts):
            error = True
            print("Error: 'Times.timestepCounts' must be a list of positive"
                  " integers.")

        if not (times.minimumTimestep.value <= times.initialTimestep.value
                <= times.maximumTimestep.value):
            error = True
            print("Error: 'Times.initialTimestep' must lie between"
                  " 'minimumTimestep' and 'maximumTimestep'.")

        if (self.general.fixedTemperature.value is not None and
            self.general.fixedTemperature.value <= IC.Tu.value):
            error = True
            print("Error: 'General.fixedTemperature' must be greater than"
                  " the unburned gas temperature.")

        sweep = self.electricField.sweep.value
        if sweep is not None:
            if (not len(sweep) or
                any(not isinstance(E, numbers.Real) for E in sweep)):
                error = True
                print("Error: 'ElectricField.sweep' must be a non-empty list"
                      " of numbers.")

        # Make sure that the mechanism file actually works and contains the
        # specified fuel and oxidizer species
        try:
            provider = self.chemistry.providerClass.value(
                self.chemistry.mechanismFile.value,
                self.chemistry.phaseID.value,
                self.chemistry.transportModel.value)
            if IC.equivalenceRatio.value is not None:
                provider.setEquivalenceRatio(IC.equivalenceRatio.value,
                                             IC.fuel.value, IC.oxidizer.value)
            if not len(provider.chargedSpecies):
                error = True
                print("Error: the mechanism %r contains no charged species." %
                      self.chemistry.mechanismFile.value)
        except (IonFlameError, IOError) as err:
            error = True
            print("Error: Couldn't set up the mechanism %r:\n%s" %
                  (self.chemistry.mechanismFile.value, err))

        # Make sure the restart file is in the correct place (if specified)
        if IC.restartFile:
            restart = IC.restartFile.value
            if not os.path.exists(restart):
                error = True
                print("Error: Couldn't find restart file %r.\n" % restart)

        if error:
            print('Validation failed.')
            print('To force simulation attempt: Config.run("force")')
        else:
            print('Validation completed successfully.')

        return not error

    def run(self, command=None):
        """
        Run the simulation using the parameters set in this Config and return
        the :class:`~ionflame.solver.RunResult`.

        Unless *command* is ``"force"``, the configuration is validated first
        and :class:`~ionflame.errors.InvalidInput` is raised if it is not
        valid.

        If the script which calls this function is passed the argument
        *validate*, then the configuration will be checked for errors and the
        script will exit without running the simulation.
        """
        if len(sys.argv) > 1 and sys.argv[1].lower() == 'validate':
            # Validate the configuration and exit
            self.validate()
            return

        if command is None:
            if not self.validate():
                raise InvalidInput('Invalid configuration; see messages above')
        elif command != 'force':
            raise ValueError('Unknown command %r. Use "force" to skip'
                             ' validation.' % command)

        return self.evaluate().run()


class ConcreteConfig(object):
    """
    Same structure as class Config, but all the Option objects are replaced
    with their actual values.
    """
    def __init__(self, config):
        self.original = config

        for name, opts in config.__dict__.items():
            if isinstance(opts, Options):
                group = opts.__class__()
                group.original = opts
                setattr(self, name, group)

                for name in dir(opts):
                    opt = getattr(opts, name)
                    if isinstance(opt, Option):
                        if opt.required and opt.value is None:
                            raise InvalidInput("'%s.%s' must be specified" %
                                               (opts.__class__.__name__, name))
                        setattr(group, name, opt.value)

        self.provider = None
        self.adiabaticTemperature = None

    def createProvider(self):
        chem = self.chemistry
        self.provider = chem.providerClass(chem.mechanismFile, chem.phaseID,
                                           chem.transportModel)
        return self.provider

    def reactantStates(self):
        """
        Compute the unburned and equilibrium (adiabatic, constant-pressure)
        states of the reactant mixture. Returns a :class:`~ionflame.utils.Struct`
        with the mass fractions *Yu* and *Yb*, densities *rhou* and *rhob*,
        and the adiabatic flame temperature *Tad*.
        """
        IC = self.initialCondition
        gas = self.provider
        gas.setEquivalenceRatio(IC.equivalenceRatio, IC.fuel, IC.oxidizer)
        gas.setState(IC.Tu, IC.pressure, gas.massFractions())
        states = utils.Struct(Yu=np.array(gas.massFractions()),
                              rhou=gas.density())

        gas.equilibrate('HP')
        states.Tad = gas.temperature()
        states.Yb = np.array(gas.massFractions())
        states.rhob = gas.density()
        if not states.Tad > IC.Tu:
            raise PropertyEvaluationError(
                'Adiabatic flame temperature ({:.2f} K) does not exceed the'
                ' unburned gas temperature'.format(states.Tad))
        self.adiabaticTemperature = states.Tad
        return states

    def setTolerances(self, flow):
        tol = self.tolerances
        flow.setSteadyTolerances(tol.steadyRelative, tol.steadyAbsolute)
        flow.setTransientTolerances(tol.transientRelative, tol.transientAbsolute)
        for name, values in (tol.species or {}).items():
            if name not in flow.componentNames:
                continue
            rtol, atol, trtol, tatol = values
            flow.setSteadyTolerances(rtol, atol, [name])
            flow.setTransientTolerances(trtol, tatol, [name])

    def setup(self):
        """
        Build the property provider, the domains and the composite system,
        and apply the initial guess. Returns the
        :class:`~ionflame.composite.CompositeSystem`.
        """
        IC = self.initialCondition
        gas = self.createProvider()
        states = self.reactantStates()
        _log.info('phi = %g, Tad = %.2f K', IC.equivalenceRatio, states.Tad)

        restart = None
        if IC.restartFile:
            restart = self.readRestartFile(IC.restartFile)
            z = restart.z
        else:
            z = np.linspace(self.grid.xLeft, self.grid.xRight, self.grid.nPoints)
        grid = _Grid(z, self.grid.maxPoints)

        mdot = IC.velocity * states.rhou
        inlet = Inlet(IC.Tu, states.Yu, mdot)
        flow = FreeFlow(gas, IC.pressure)
        flow.setExcessSpecies(states.Yu)
        self.setTolerances(flow)
        outlet = Outlet()
        system = CompositeSystem(inlet, flow, outlet, grid)

        if restart is not None:
            X = np.vstack([restart.U, restart.T, restart.E, restart.Y])
            system.setProfile(restart.z, X, [float(restart.mdot), IC.Tu])
        else:
            locs = IC.guessLocations
            ub = mdot / states.rhob
            system.setInitialGuess('velocity', locs,
                                   [IC.velocity, IC.velocity, ub, ub])
            system.setInitialGuess('T', locs, [IC.Tu, IC.Tu, states.Tad, states.Tad])
            system.setInitialGuess('eField', locs, [0.0] * 4)
            for k, name in enumerate(gas.speciesNames):
                Yu = states.Yu[k]
                Yb = states.Yb[k]
                system.setInitialGuess(name, locs, [Yu, Yu, Yb, Yb])

        return system

    def readRestartFile(self, restartFile):
        """
        Read the solution snapshot *restartFile* written by a previous run
        with the same mechanism.
        """
        data = utils.load(restartFile)
        names = utils.decodeNames(data.speciesNames)
        if names != list(self.provider.speciesNames):
            raise InvalidInput('Species in restart file {!r} do not match the'
                               ' mechanism'.format(restartFile))
        _log.info('Initial guess read from %s (%i points)', restartFile,
                  len(data.z))
        return data

    def fixedTemperature(self):
        if self.general.fixedTemperature is not None:
            return self.general.fixedTemperature
        return 0.5 * (self.initialCondition.Tu + self.adiabaticTemperature)

    def run(self):
        """
        Run a single flame simulation (stage 1 followed by stage 2 for each
        requested field strength) using the parameters set in this Config,
        write the output files, and return the
        :class:`~ionflame.solver.RunResult`.

        Errors in setting up the problem (e.g. a failed equilibrium
        calculation or a restart file for another mechanism) are raised
        before anything is written to the output directory.
        """
        utils.setupLogging(self.paths.logFile, self.general.loglevel)

        system = self.setup()
        refiner = None
        if self.general.refineGrid:
            g = self.grid
            refiner = Refiner(g.ratio, g.slope, g.curve, g.gridMin)

        solver = FlameSolver(system, self.times, self.solver, refiner)
        solver.initialize(self.fixedTemperature())

        confString = self.original.stringify()
        if not os.path.isdir(self.paths.outputDir):
            os.makedirs(self.paths.outputDir, 0o0755)
        confOutPath = os.path.join(self.paths.outputDir, 'config')
        if (os.path.exists(confOutPath)):
            os.unlink(confOutPath)
        with open(confOutPath, 'w') as confOut:
            confOut.write(confString)

        t1 = time.time()
        result = solver.run(self.electricField.fields())
        t2 = time.time()
        result.adiabaticTemperature = self.adiabaticTemperature
        _log.info('Solution took %.1f seconds.', t2-t1)

        output.ResultWriter(self)(result)
        return result
