"""Core step interpreter - walks a validated script with injected hooks."""

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Optional

from .context import CommandResult, RunnerContext, RunnerResult, to_command_result
from .errors import (
    AssertionFailure,
    MissingHookError,
    StepBudgetExceeded,
    StepNotFoundError,
    UnknownChoiceError,
    WalkthroughError,
)
from .hooks import RunnerHooks
from .schema import AssertStep, ChoiceStep, CommandStep, PromptStep, Script, validate_script

logger = logging.getLogger(__name__)

MAX_STEPS = 1000


async def _resolve(value: Any) -> Any:
    """Await hook results that are awaitable; pass plain values through."""
    if inspect.isawaitable(value):
        return await value
    return value


class ScriptEngine:
    """
    Executes step scripts against a fixed hook set.

    Key responsibilities:
    - Validate the script before the first step runs
    - Walk steps in declared order, honoring choice/goto jumps
    - Skip steps whose ``when`` guard is false
    - Enforce the per-run step ceiling

    The engine holds no per-run state, so one instance may serve several
    sequential runs. Concurrent runs should each get their own hook set.
    """

    def __init__(self, hooks: Optional[RunnerHooks] = None, max_steps: int = MAX_STEPS):
        """
        Initialize the engine.

        Args:
            hooks: Host hooks for I/O, commands, evaluation and logging
            max_steps: Step ceiling per run (the only cycle defense)
        """
        self.hooks = hooks or RunnerHooks()
        self.max_steps = max_steps

    async def run(self, raw_script: Any, initial_vars: Optional[Dict[str, str]] = None) -> RunnerResult:
        """
        Run a script to termination.

        Args:
            raw_script: Untrusted script input or a validated Script
            initial_vars: Variables seeded into the run context

        Returns:
            RunnerResult for the finished run

        Raises:
            SchemaError, GraphIntegrityError: Before any step runs
            WalkthroughError: On fatal runtime errors, annotated with the
                failing step id and a vars snapshot
            asyncio.CancelledError: When the run is cancelled, annotated
                the same way
        """
        script = validate_script(raw_script)
        ctx = RunnerContext(vars=dict(initial_vars or {}))

        try:
            return await self._walk(script, ctx)
        except (WalkthroughError, asyncio.CancelledError) as e:
            e.step_id = ctx.current_step_id
            e.vars = dict(ctx.vars)
            raise

    async def _walk(self, script: Script, ctx: RunnerContext) -> RunnerResult:
        order = script.step_ids()
        id_to_step = {step.id: step for step in script.steps}
        position = {step_id: index for index, step_id in enumerate(order)}

        current_id: Optional[str] = script.start or order[0]
        steps_run = 0

        while current_id:
            step = id_to_step.get(current_id)
            if step is None:
                raise StepNotFoundError(f"Step '{current_id}' not found")

            ctx.current_step_id = step.id

            steps_run += 1
            if steps_run > self.max_steps:
                raise StepBudgetExceeded(f"Aborted: exceeded maximum step count ({self.max_steps})")

            next_id = self._next_sequential(step.id, order, position)

            if step.when and not await self._evaluate(step.when, ctx):
                logger.debug("Skipping step %s: guard %r is false", step.id, step.when)
                await self._log(f"Skipped step {step.id}")
                current_id = next_id
                continue

            logger.debug("Running step %s (%s)", step.id, step.type)

            if step.type == 'prompt':
                await self._run_prompt(step, ctx)
                current_id = next_id

            elif step.type == 'choice':
                current_id = await self._run_choice(step, ctx)

            elif step.type == 'command':
                result = await self._run_command(step, ctx)
                if not result.ok and step.on_error != 'continue':
                    logger.debug("Command step %s failed with code %d", step.id, result.code)
                    return RunnerResult(
                        status='failure',
                        steps_run=steps_run,
                        vars=dict(ctx.vars),
                        last_message=result.output,
                    )
                if not result.ok:
                    await self._log(f"Command in step {step.id} exited with {result.code}; continuing")
                current_id = next_id

            elif step.type == 'assert':
                await self._run_assert(step, ctx)
                current_id = next_id

            elif step.type == 'goto':
                current_id = step.target

            elif step.type == 'end':
                return RunnerResult(
                    status=step.status,
                    steps_run=steps_run,
                    vars=dict(ctx.vars),
                    last_message=step.message,
                )

            else:
                raise WalkthroughError(f"Unhandled step type {step.type}")

        return RunnerResult(status='success', steps_run=steps_run, vars=dict(ctx.vars))

    def _next_sequential(self, step_id: str, order: List[str], position: Dict[str, int]) -> Optional[str]:
        index = position[step_id]
        if index + 1 < len(order):
            return order[index + 1]
        return None

    async def _run_prompt(self, step: PromptStep, ctx: RunnerContext) -> None:
        if self.hooks.prompt is None:
            raise MissingHookError(f"No prompt handler provided for step {step.id}")

        value = await _resolve(self.hooks.prompt(step.message, step.default_value, ctx))
        ctx.vars[step.variable] = '' if value is None else str(value)

    async def _run_choice(self, step: ChoiceStep, ctx: RunnerContext) -> str:
        """Ask the host for a selection.

        Returns:
            The selected option's goto target
        """
        if self.hooks.choose is None:
            raise MissingHookError(f"No choice handler provided for step {step.id}")

        choice_id = await _resolve(self.hooks.choose(step.message, step.options, ctx))

        # Hosts may answer with either the option id or its target
        for option in step.options:
            if option.id == choice_id or option.goto == choice_id:
                return option.goto

        raise UnknownChoiceError(f"Choice '{choice_id}' not found in step {step.id}")

    async def _run_command(self, step: CommandStep, ctx: RunnerContext) -> CommandResult:
        if self.hooks.exec_command is None:
            raise MissingHookError(f"No command executor provided for step {step.id}")

        result = await _resolve(self.hooks.exec_command(step.command, step.args, step.cwd, ctx))
        return to_command_result(result, step.id)

    async def _run_assert(self, step: AssertStep, ctx: RunnerContext) -> None:
        if not await self._evaluate(step.expression, ctx):
            raise AssertionFailure(step.message or f"Assertion failed: {step.expression}")

    async def _evaluate(self, expression: str, ctx: RunnerContext) -> bool:
        if self.hooks.evaluate is None:
            raise MissingHookError("No evaluator provided for assert/when clauses")
        return bool(await _resolve(self.hooks.evaluate(expression, ctx)))

    async def _log(self, message: str) -> None:
        if self.hooks.log is not None:
            await _resolve(self.hooks.log(message))


async def run_script(
    raw_script: Any,
    hooks: Optional[RunnerHooks] = None,
    initial_vars: Optional[Dict[str, str]] = None,
    max_steps: int = MAX_STEPS,
) -> RunnerResult:
    """
    Validate and run a script with a one-off engine.

    Args:
        raw_script: Untrusted script input
        hooks: Host hooks
        initial_vars: Variables seeded into the run context
        max_steps: Step ceiling for this run

    Returns:
        RunnerResult for the finished run
    """
    engine = ScriptEngine(hooks, max_steps=max_steps)
    return await engine.run(raw_script, initial_vars)
