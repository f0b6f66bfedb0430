"""Host-supplied hooks consumed by the interpreter.

Every hook is optional and may be a plain function or a coroutine function.
A step whose hook is missing raises MissingHookError when it runs.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

from .context import CommandResult, RunnerContext
from .schema import ChoiceOption

PromptHook = Callable[[str, Optional[str], RunnerContext], Union[str, Awaitable[str]]]
ChooseHook = Callable[[str, List[ChoiceOption], RunnerContext], Union[str, Awaitable[str]]]
ExecCommandHook = Callable[
    [str, Optional[List[str]], Optional[str], RunnerContext],
    Union[CommandResult, dict, Awaitable[Union[CommandResult, dict]]],
]
EvaluateHook = Callable[[str, RunnerContext], Union[bool, Awaitable[bool]]]
LogHook = Callable[[str], Any]


@dataclass
class RunnerHooks:
    """The hook set bound to one engine instance."""

    prompt: Optional[PromptHook] = None
    choose: Optional[ChooseHook] = None
    exec_command: Optional[ExecCommandHook] = None
    evaluate: Optional[EvaluateHook] = None
    log: Optional[LogHook] = None
