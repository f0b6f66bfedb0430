"""Walkthrough engine - declarative step scripts run through injected hooks."""

from .bridge import HostBridge
from .context import CommandResult, RunnerContext, RunnerResult
from .engine import MAX_STEPS, ScriptEngine, run_script
from .errors import (
    AssertionFailure,
    CommandResultError,
    ExpressionError,
    GraphIntegrityError,
    MissingHookError,
    SchemaError,
    StepBudgetExceeded,
    StepNotFoundError,
    UnknownChoiceError,
    WalkthroughError,
)
from .expressions import ExpressionEvaluator
from .hooks import RunnerHooks
from .loader import ScriptEntry, ScriptLoader
from .runner import ActionRunner, MockActionRunner, RealActionRunner
from .schema import (
    AssertStep,
    ChoiceOption,
    ChoiceStep,
    CommandStep,
    EndStep,
    GotoStep,
    PromptStep,
    Script,
    Step,
    find_unreachable_steps,
    validate_script,
)
from .session import WalkthroughSession
from .state import FileRunStateStore, MemoryRunStateStore, RunStateStore, SavedRunState, state_key

__all__ = [
    'ScriptEngine',
    'run_script',
    'MAX_STEPS',
    'validate_script',
    'find_unreachable_steps',
    'Script',
    'Step',
    'PromptStep',
    'ChoiceStep',
    'ChoiceOption',
    'CommandStep',
    'AssertStep',
    'GotoStep',
    'EndStep',
    'RunnerHooks',
    'RunnerContext',
    'RunnerResult',
    'CommandResult',
    'HostBridge',
    'SavedRunState',
    'RunStateStore',
    'MemoryRunStateStore',
    'FileRunStateStore',
    'state_key',
    'ScriptLoader',
    'ScriptEntry',
    'ActionRunner',
    'RealActionRunner',
    'MockActionRunner',
    'ExpressionEvaluator',
    'WalkthroughSession',
    'WalkthroughError',
    'SchemaError',
    'GraphIntegrityError',
    'MissingHookError',
    'StepNotFoundError',
    'UnknownChoiceError',
    'AssertionFailure',
    'CommandResultError',
    'StepBudgetExceeded',
    'ExpressionError',
]
