from .errors import *
from .input import *
from .output import *
from .providers import PropertyProvider, CanteraGas
from .solver import SolveStage, DriverState, DampedNewton, FlameSolver, RunResult
from . import utils

__version__ = '0.1.0'
