"""
Error kinds raised inside the flame solver and the record used to report a
failed solve stage without raising.
"""

import enum


class FailureKind(enum.Enum):
    INVALID_INPUT = 'InvalidInput'
    PROPERTY_EVALUATION = 'PropertyEvaluationFailure'
    NEWTON_DIVERGENCE = 'NewtonDivergence'
    REFINEMENT_LIMIT = 'RefinementLimitExceeded'


class IonFlameError(Exception):
    """ Base class for errors raised by the solver. """
    kind = None


class InvalidInput(IonFlameError, ValueError):
    """ Malformed or out-of-range run parameters. """
    kind = FailureKind.INVALID_INPUT


class PropertyEvaluationError(IonFlameError):
    """
    A property provider reported an unphysical or undefined state, e.g. a
    negative density or a failed equilibrium calculation.
    """
    kind = FailureKind.PROPERTY_EVALUATION


class NewtonDivergence(IonFlameError):
    """ Damped Newton iteration (and its time stepping fallback) failed. """
    kind = FailureKind.NEWTON_DIVERGENCE


class RefinementLimitExceeded(IonFlameError):
    """ Refinement would grow the grid past the allowed number of points. """
    kind = FailureKind.REFINEMENT_LIMIT


class Failure(object):
    """
    Terminal state of a solve stage that did not converge.

    :param kind:
        A :class:`FailureKind`
    :param stage:
        The :class:`~ionflame.solver.SolveStage` that failed
    :param message:
        Diagnostic text of the underlying error
    :param profile:
        The last converged profile (a :class:`~ionflame.utils.Struct`), or
        *None* if nothing converged before the failure.
    """
    def __init__(self, kind, stage, message, profile=None):
        self.kind = kind
        self.stage = stage
        self.message = message
        self.profile = profile

    def __repr__(self):
        return 'Failure(%s, stage=%s, %r)' % (self.kind.value, int(self.stage),
                                              self.message)
