"""Per-run execution state and results."""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .errors import CommandResultError

RunStatus = Literal['success', 'failure', 'cancel']


@dataclass
class RunnerContext:
    """Mutable state owned by one in-flight run."""

    vars: Dict[str, str] = field(default_factory=dict)
    current_step_id: Optional[str] = None


class RunnerResult(BaseModel):
    """Outcome of a run. Returned once and never mutated."""

    model_config = ConfigDict(frozen=True)

    status: RunStatus
    steps_run: int
    vars: Dict[str, str] = Field(default_factory=dict)
    last_message: Optional[str] = None


class CommandResult(BaseModel):
    """
    Exit status and output of a command hook.

    Accepts ``returncode`` as well as ``code`` so ActionRunner.run_shell
    dictionaries validate without translation.
    """

    model_config = ConfigDict(extra="ignore")

    code: int = Field(..., validation_alias=AliasChoices('code', 'returncode'))
    stdout: Optional[str] = None
    stderr: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code == 0

    @property
    def output(self) -> Optional[str]:
        """stderr, falling back to stdout; None when both are empty."""
        return self.stderr or self.stdout or None


def to_command_result(result: Any, step_id: Optional[str]) -> CommandResult:
    """Validate what a command hook returned.

    Raises:
        CommandResultError: If ``result`` carries no exit code
    """
    if isinstance(result, CommandResult):
        return result
    try:
        return CommandResult.model_validate(result)
    except ValidationError as e:
        raise CommandResultError(
            f"Command executor returned an invalid result for step {step_id}: {e.error_count()} errors"
        ) from e
