"""Pydantic models for step-script validation."""

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import GraphIntegrityError, SchemaError

logger = logging.getLogger(__name__)

StepId = Annotated[str, Field(min_length=1, max_length=128)]
Expression = Annotated[str, Field(min_length=1, max_length=1024)]


class _BaseStep(BaseModel):
    """Fields shared by every step type."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: StepId = Field(..., description="Unique step identifier")
    description: Optional[str] = Field(None, description="Human-readable note, not shown to the user")
    when: Optional[str] = Field(None, description="Guard expression; a false result skips the step")


class PromptStep(_BaseStep):
    """Ask for a string and bind it to ``variable``."""

    type: Literal['prompt'] = 'prompt'
    message: str = Field(..., min_length=1)
    variable: str = Field(..., min_length=1)
    default_value: Optional[str] = Field(None, alias='defaultValue')


class ChoiceOption(BaseModel):
    """One selectable option of a choice step."""

    model_config = ConfigDict(extra="ignore")

    id: StepId
    label: str = Field(..., min_length=1)
    goto: StepId


class ChoiceStep(_BaseStep):
    """Ask for a selection; the chosen option's ``goto`` is the next step."""

    type: Literal['choice'] = 'choice'
    message: str = Field(..., min_length=1)
    options: List[ChoiceOption] = Field(..., min_length=1)


class CommandStep(_BaseStep):
    """Run an external process through the exec_command hook."""

    type: Literal['command'] = 'command'
    command: str = Field(..., min_length=1)
    args: Optional[List[str]] = None
    cwd: Optional[str] = None
    on_error: Literal['fail', 'continue'] = Field('fail', alias='onError')


class AssertStep(_BaseStep):
    """Abort the run when ``expression`` evaluates to false."""

    type: Literal['assert'] = 'assert'
    expression: Expression
    message: Optional[str] = None


class GotoStep(_BaseStep):
    """Unconditional jump."""

    type: Literal['goto'] = 'goto'
    target: StepId


class EndStep(_BaseStep):
    """Terminate the run with ``status``."""

    type: Literal['end'] = 'end'
    status: Literal['success', 'failure', 'cancel'] = 'success'
    message: Optional[str] = None


Step = Annotated[
    Union[PromptStep, ChoiceStep, CommandStep, AssertStep, GotoStep, EndStep],
    Field(discriminator='type'),
]


class Script(BaseModel):
    """
    A validated step script.

    Steps run in declared order unless a choice or goto jumps. ``start``
    defaults to the first step.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(None, description="Display name")
    version: Optional[str] = Field(None, description="Script version")
    start: Optional[StepId] = Field(None, description="Id of the first step to run")
    steps: List[Step] = Field(..., min_length=1, description="Ordered steps")

    @field_validator('version', mode='before')
    @classmethod
    def _version_as_string(cls, value: Any) -> Any:
        # YAML reads `version: 1.0` as a float
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = '.'.join(str(part) for part in error.get('loc', ())) or '<root>'
        parts.append(f"{location}: {error.get('msg')}")
    return "Invalid script: " + "; ".join(parts)


def _check_graph(script: Script) -> None:
    """Enforce unique ids and resolvable jump targets.

    Raises:
        GraphIntegrityError: On the first violation found
    """
    ids = set()
    for step in script.steps:
        if step.id in ids:
            raise GraphIntegrityError(f"Duplicate step id: {step.id}")
        ids.add(step.id)

    for step in script.steps:
        targets: List[str] = []
        if isinstance(step, ChoiceStep):
            targets = [option.goto for option in step.options]
        elif isinstance(step, GotoStep):
            targets = [step.target]
        for target in targets:
            if target not in ids:
                raise GraphIntegrityError(f"Unknown step target: {target}")

    if script.start is not None and script.start not in ids:
        raise GraphIntegrityError(f"Start step '{script.start}' does not exist")


def validate_script(data: Any) -> Script:
    """
    Parse untrusted input into a Script.

    Args:
        data: Mapping, JSON text, or an existing Script

    Returns:
        Validated Script instance

    Raises:
        SchemaError: If the input does not match the step schema
        GraphIntegrityError: If ids are duplicated or references dangle
    """
    try:
        if isinstance(data, Script):
            script = data
        elif isinstance(data, (str, bytes, bytearray)):
            script = Script.model_validate_json(data)
        else:
            script = Script.model_validate(data)
    except ValidationError as e:
        raise SchemaError(_format_errors(e), errors=e.errors(include_url=False)) from e

    _check_graph(script)
    logger.debug("Validated script %r with %d steps", script.name, len(script.steps))
    return script


def _successors(step, next_id: Optional[str]) -> List[str]:
    fall_through = [next_id] if next_id else []

    if isinstance(step, GotoStep):
        targets = [step.target]
    elif isinstance(step, ChoiceStep):
        targets = [option.goto for option in step.options]
    elif isinstance(step, EndStep):
        targets = []
    else:
        return fall_through

    # A guarded jump or end may be skipped, which falls through
    if step.when:
        targets = targets + fall_through
    return targets


def find_unreachable_steps(script: Script) -> List[str]:
    """
    List step ids that no path from the start step reaches.

    Advisory only: unreachable steps are legal.

    Args:
        script: Validated script

    Returns:
        Unreachable step ids in declared order
    """
    order = script.step_ids()
    by_id: Dict[str, Any] = {step.id: step for step in script.steps}
    next_of = {sid: (order[i + 1] if i + 1 < len(order) else None) for i, sid in enumerate(order)}

    seen = set()
    pending = [script.start or order[0]]
    while pending:
        step_id = pending.pop()
        if step_id in seen or step_id not in by_id:
            continue
        seen.add(step_id)
        pending.extend(_successors(by_id[step_id], next_of[step_id]))

    return [sid for sid in order if sid not in seen]
