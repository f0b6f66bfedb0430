"""WalkthroughSession - hosts runs for an interactive surface.

The session owns the script list, saved run state and the active run. The
surface talks to it with small camelCase messages:

    inbound:  start | resume | restart {scriptId}
              promptResponse {stepId, value}
              choiceResponse {stepId, choiceId}
    outbound: init, busy, reset, log, status, prompt, choice
"""

import asyncio
import inspect
import logging
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from walkthrough.utils.diagnostics import DiagnosticCollector

from .bridge import HostBridge
from .context import CommandResult, RunnerContext, RunnerResult, to_command_result
from .engine import MAX_STEPS, ScriptEngine
from .expressions import ExpressionEvaluator
from .hooks import RunnerHooks
from .loader import ScriptEntry
from .runner import ActionRunner
from .state import RunStateStore, SavedRunState, state_key

logger = logging.getLogger(__name__)


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal['start', 'resume', 'restart']
    script_id: Optional[str] = Field(None, alias='scriptId')


class PromptResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal['promptResponse']
    step_id: str = Field(..., alias='stepId')
    value: Optional[str] = None


class ChoiceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal['choiceResponse']
    step_id: str = Field(..., alias='stepId')
    choice_id: str = Field(..., alias='choiceId')


SessionMessage = Annotated[Union[RunRequest, PromptResponse, ChoiceResponse], Field(discriminator='type')]

_message_adapter = TypeAdapter(SessionMessage)


class WalkthroughSession:
    """
    Runs walkthrough scripts on behalf of one interactive surface.

    Key responsibilities:
    - Start, resume (replay saved answers) and restart (clear history) runs
    - Give every run its own HostBridge and hook set
    - Persist answers, variables and outcome after every run
    - Render errors escaping a run as a terminal failure state
    """

    def __init__(
        self,
        scripts: List[ScriptEntry],
        store: RunStateStore,
        runner: ActionRunner,
        emit: Callable[[Dict[str, Any]], Any],
        workspace: Optional[str] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
        max_steps: int = MAX_STEPS,
        diagnostics: Optional[DiagnosticCollector] = None,
    ):
        """
        Initialize the session.

        Args:
            scripts: Scripts offered to the surface
            store: Saved run state storage
            runner: Executes command steps
            emit: Sink for outbound events (sync or async)
            workspace: Workspace path; keys the saved state and is the
                default working directory for commands
            evaluator: Expression evaluator for guards and asserts
            max_steps: Step ceiling per run
            diagnostics: Collector for fatal run errors
        """
        self.scripts = list(scripts)
        self.store = store
        self.runner = runner
        self.emit = emit
        self.workspace = workspace
        self.state_key = state_key(workspace)
        self.evaluator = evaluator or ExpressionEvaluator()
        self.max_steps = max_steps
        self.diagnostics = diagnostics or DiagnosticCollector()

        self.saved_state: Optional[SavedRunState] = None
        self.is_running = False
        self.bridge: Optional[HostBridge] = None
        self.run_task: Optional[asyncio.Task] = None
        self._abandoned = False
        # Task awaiting the engine while a run is in progress
        self._engine_task: Optional[asyncio.Task] = None

    async def initialize(self) -> None:
        """Load saved state and announce the scripts to the surface."""
        self.saved_state = self.store.get(self.state_key)
        await self._post({
            'type': 'init',
            'scripts': [entry.model_dump(exclude_none=True) for entry in self.scripts],
            'state': self.saved_state.to_blob() if self.saved_state else None,
        })

    def find_script(self, script_id: Optional[str]) -> Optional[ScriptEntry]:
        """Script with ``script_id``, falling back to the first script."""
        for entry in self.scripts:
            if entry.id == script_id:
                return entry
        return self.scripts[0] if self.scripts else None

    async def start(
        self,
        script_id: Optional[str] = None,
        initial_vars: Optional[Dict[str, str]] = None,
    ) -> Optional[RunnerResult]:
        """Fresh run: nothing is replayed."""
        return await self.start_run(script_id, initial_vars=initial_vars)

    async def resume(
        self,
        script_id: Optional[str] = None,
        initial_vars: Optional[Dict[str, str]] = None,
    ) -> Optional[RunnerResult]:
        """Run again, replaying saved answers instead of asking."""
        return await self.start_run(script_id, use_saved_answers=True, initial_vars=initial_vars)

    async def restart(
        self,
        script_id: Optional[str] = None,
        initial_vars: Optional[Dict[str, str]] = None,
    ) -> Optional[RunnerResult]:
        """Clear saved history, then run fresh."""
        return await self.start_run(script_id, clear_saved=True, initial_vars=initial_vars)

    async def start_run(
        self,
        script_id: Optional[str] = None,
        use_saved_answers: bool = False,
        clear_saved: bool = False,
        initial_vars: Optional[Dict[str, str]] = None,
    ) -> Optional[RunnerResult]:
        """
        Run a script to completion.

        Args:
            script_id: Script to run (default: first script)
            use_saved_answers: Replay answers and variables from saved state
            clear_saved: Delete saved state before running
            initial_vars: Variables seeded into the run, over any saved ones

        Returns:
            RunnerResult, or None if the run was refused, raised or was abandoned
        """
        if self.is_running:
            await self._post_log('A walkthrough run is already in progress.', 'warn')
            return None

        entry = self.find_script(script_id)
        if entry is None:
            await self._post_log('No walkthrough scripts available.', 'error')
            return None

        self.is_running = True
        self._abandoned = False
        bridge: Optional[HostBridge] = None
        try:
            if clear_saved:
                self.saved_state = None
                self.store.update(self.state_key, None)

            saved = self.saved_state if use_saved_answers else None
            if saved is not None and saved.script_id != entry.id:
                # Saved answers are keyed by step id and only valid for their own script
                await self._post_log(f"No saved run for {entry.id}; starting fresh")
                saved = None

            answers = dict(saved.answers) if saved else {}
            run_vars = dict(saved.vars) if saved else {}
            run_vars.update(initial_vars or {})

            bridge = HostBridge(self._post, answers=answers, replay=use_saved_answers)
            self.bridge = bridge

            await self._post({'type': 'busy', 'value': True})
            await self._post({'type': 'reset'})
            await self._post_log(f"Running script: {entry.name or entry.id}")

            engine = ScriptEngine(self._build_hooks(bridge), max_steps=self.max_steps)
            try:
                result = await self._run_engine(engine, entry, run_vars)
            except asyncio.CancelledError as e:
                if not self._abandoned:
                    raise
                self._clear_cancel_request()
                cancel_vars = getattr(e, 'vars', None)
                await self._post_log('Run abandoned', 'warn')
                await self._post({'type': 'status', 'status': 'cancel', 'message': 'Run abandoned'})
                self._save(
                    entry.id,
                    bridge.answers,
                    cancel_vars if cancel_vars is not None else run_vars,
                    'cancel',
                    'Run abandoned',
                )
                return None
            except Exception as e:
                message = str(e) or 'Unexpected error running script'
                step_id = getattr(e, 'step_id', None)
                error_vars = getattr(e, 'vars', None)
                logger.error("Run of %s failed at step %s: %s", entry.id, step_id, message)

                self.diagnostics.record_failure(entry.id, step_id, message, {'error_type': type(e).__name__})
                await self._post_log(message, 'error')
                await self._post({'type': 'status', 'status': 'failure', 'message': message})
                self._save(
                    entry.id,
                    bridge.answers,
                    error_vars if error_vars is not None else run_vars,
                    'failure',
                    message,
                )
                return None

            await self._post({
                'type': 'status',
                'status': result.status,
                'message': result.last_message or result.status,
            })
            self._save(entry.id, bridge.answers, result.vars, result.status, result.last_message)
            return result
        finally:
            if bridge is not None:
                bridge.close()
            self.bridge = None
            self.is_running = False
            await self._post({'type': 'busy', 'value': False})

    async def _run_engine(self, engine: ScriptEngine, entry: ScriptEntry, run_vars: Dict[str, str]) -> RunnerResult:
        self._engine_task = asyncio.current_task()
        try:
            return await engine.run(entry.as_input(), run_vars)
        finally:
            self._engine_task = None

    def handle_message(self, raw: Dict[str, Any]) -> Optional[asyncio.Task]:
        """
        Dispatch one inbound surface message.

        Run requests are scheduled on the running loop and their task is
        returned. Responses settle the active bridge; responses nothing is
        waiting for are ignored.
        """
        try:
            message = _message_adapter.validate_python(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed message %r: %s", raw, e)
            return None

        if isinstance(message, RunRequest):
            self.run_task = asyncio.get_running_loop().create_task(self.start_run(
                message.script_id,
                use_saved_answers=message.type == 'resume',
                clear_saved=message.type == 'restart',
            ))
            return self.run_task

        if self.bridge is None:
            logger.debug("Ignoring %s for step %s: no active run", message.type, message.step_id)
            return None

        if isinstance(message, PromptResponse):
            self.bridge.resolve_prompt(message.step_id, message.value)
        else:
            self.bridge.resolve_choice(message.step_id, message.choice_id)
        return None

    def abandon(self) -> None:
        """
        Give up on the active run.

        A pending prompt or choice is cancelled, and so is the wait on a
        running command. No later step runs. A command process that already
        started is not killed; its result is discarded.
        """
        if self.bridge is None:
            return
        self._abandoned = True
        self.bridge.close()
        if self._engine_task is not None and self._engine_task is not asyncio.current_task():
            self._engine_task.cancel()

    def dispose(self) -> None:
        self.abandon()

    def _clear_cancel_request(self) -> None:
        task = asyncio.current_task()
        # Task.uncancel is new in Python 3.11
        if task is not None and hasattr(task, 'uncancel'):
            task.uncancel()

    def _check_abandoned(self) -> None:
        if self._abandoned:
            raise asyncio.CancelledError()

    def _build_hooks(self, bridge: HostBridge) -> RunnerHooks:
        evaluate = self.evaluator.as_hook(on_error=lambda message: self._post_log(message, 'error'))

        async def evaluate_unless_abandoned(expression: str, ctx: RunnerContext) -> bool:
            self._check_abandoned()
            return await evaluate(expression, ctx)

        async def log(message: str) -> None:
            self._check_abandoned()
            await self._post_log(message)

        return RunnerHooks(
            prompt=bridge.prompt,
            choose=bridge.choose,
            exec_command=self._exec_command,
            evaluate=evaluate_unless_abandoned,
            log=log,
        )

    async def _exec_command(
        self,
        command: str,
        args: Optional[List[str]],
        cwd: Optional[str],
        ctx: RunnerContext,
    ) -> CommandResult:
        self._check_abandoned()
        result = self.runner.exec_command(command, args, cwd or self.workspace, ctx)
        if inspect.isawaitable(result):
            result = await result
        result = to_command_result(result, ctx.current_step_id)

        if result.stdout:
            await self._post_log(result.stdout.strip())
        if result.stderr:
            await self._post_log(result.stderr.strip(), 'warn' if result.ok else 'error')
        return result

    def _save(
        self,
        script_id: str,
        answers: Dict[str, str],
        variables: Dict[str, str],
        status: str,
        message: Optional[str],
    ) -> None:
        self.saved_state = SavedRunState(
            script_id=script_id,
            answers=answers,
            vars=variables,
            last_status=status,
            last_message=message,
        )
        self.store.update(self.state_key, self.saved_state)

    async def _post_log(self, message: str, level: str = 'info') -> None:
        await self._post({'type': 'log', 'level': level, 'message': message})

    async def _post(self, event: Dict[str, Any]) -> None:
        try:
            result = self.emit(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # Delivery errors never abort a run
            logger.warning("Failed to deliver %s event", event.get('type'), exc_info=True)
