"""Exception taxonomy for the step-script engine.

Validation and configuration errors always propagate out of a run. Expected
runtime outcomes (a failed command, an End step with failure/cancel status)
are returned as RunnerResult values instead.
"""

from typing import Any, Dict, List, Optional


class WalkthroughError(Exception):
    """Base class for every engine error.

    The interpreter annotates errors escaping a run with ``step_id`` and a
    ``vars`` snapshot so a host can persist partial state.
    """

    step_id: Optional[str] = None
    vars: Optional[Dict[str, str]] = None


class SchemaError(WalkthroughError, ValueError):
    """Script input is structurally invalid."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class GraphIntegrityError(WalkthroughError, ValueError):
    """Step ids are duplicated or a jump references a missing step."""


class MissingHookError(WalkthroughError):
    """A step needs a hook the host did not supply."""


class StepNotFoundError(WalkthroughError):
    """A jump target could not be resolved at dispatch time."""


class UnknownChoiceError(WalkthroughError):
    """The choose hook returned a value matching no option."""


class AssertionFailure(WalkthroughError):
    """An assert step evaluated to false."""


class StepBudgetExceeded(WalkthroughError):
    """The per-run step ceiling was exceeded."""


class ExpressionError(WalkthroughError):
    """An expression could not be parsed or evaluated."""


class CommandResultError(WalkthroughError):
    """The command hook returned something that is not a command result."""
