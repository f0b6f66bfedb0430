"""HostBridge - settles prompt/choice hooks from inbound surface events.

The interpreter awaits one hook at a time, so at most one request is pending
per run. Each pending request is a one-shot future keyed by step id; the
interactive surface answers by sending an event tagged with that id.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .context import RunnerContext

logger = logging.getLogger(__name__)


@dataclass
class _PendingRequest:
    kind: str
    future: asyncio.Future


def _option_payload(option: Any) -> Dict[str, Any]:
    if hasattr(option, 'model_dump'):
        return option.model_dump()
    return dict(option)


class HostBridge:
    """
    Pending-resolver map between the interpreter and an interactive surface.

    Use one bridge per run. Its ``prompt`` and ``choose`` methods are hook
    implementations; ``resolve_prompt`` / ``resolve_choice`` are called by the
    host when the surface answers.
    """

    def __init__(
        self,
        emit: Callable[[Dict[str, Any]], Any],
        answers: Optional[Dict[str, str]] = None,
        replay: bool = False,
    ):
        """
        Initialize the bridge.

        Args:
            emit: Sink for outbound events (sync or async)
            answers: Previously given answers keyed by step id
            replay: If True, answer seeded steps without asking again
        """
        self.emit = emit
        self.replay = replay
        self._answers: Dict[str, str] = dict(answers or {})
        self._pending: Dict[str, _PendingRequest] = {}
        self._closed = False

    @property
    def answers(self) -> Dict[str, str]:
        """Snapshot of every answer given or replayed so far."""
        return dict(self._answers)

    @property
    def pending_step_ids(self) -> List[str]:
        return list(self._pending)

    def has_pending(self, step_id: str) -> bool:
        return step_id in self._pending

    async def prompt(self, message: str, default_value: Optional[str], ctx: RunnerContext) -> str:
        """Prompt hook: wait for a ``promptResponse`` for the current step."""
        step_id = ctx.current_step_id or f"prompt-{int(time.time() * 1000)}"

        if self.replay and step_id in self._answers:
            await self._emit({'type': 'log', 'level': 'info', 'message': f"Replaying saved answer for {step_id}"})
            return self._answers[step_id]

        future = self._register(step_id, 'prompt')
        await self._emit({
            'type': 'prompt',
            'stepId': step_id,
            'message': message,
            'defaultValue': default_value,
        })
        return await future

    async def choose(self, message: str, options: List[Any], ctx: RunnerContext) -> str:
        """Choose hook: wait for a ``choiceResponse`` for the current step."""
        step_id = ctx.current_step_id or f"choice-{int(time.time() * 1000)}"

        if self.replay and step_id in self._answers:
            await self._emit({'type': 'log', 'level': 'info', 'message': f"Replaying saved choice for {step_id}"})
            return self._answers[step_id]

        future = self._register(step_id, 'choice')
        await self._emit({
            'type': 'choice',
            'stepId': step_id,
            'message': message,
            'options': [_option_payload(option) for option in options],
        })
        return await future

    def resolve_prompt(self, step_id: str, value: Optional[str]) -> bool:
        """Settle a pending prompt. Returns False when nothing was waiting."""
        return self._resolve(step_id, 'prompt', '' if value is None else value)

    def resolve_choice(self, step_id: str, choice_id: str) -> bool:
        """Settle a pending choice. Returns False when nothing was waiting."""
        return self._resolve(step_id, 'choice', choice_id)

    def close(self) -> None:
        """Cancel every pending request. Called when the run ends.

        Later prompt or choose calls are cancelled immediately.
        """
        self._closed = True
        for step_id, pending in self._pending.items():
            if not pending.future.done():
                logger.debug("Cancelling pending %s for step %s", pending.kind, step_id)
                pending.future.cancel()
        self._pending.clear()

    def _register(self, step_id: str, kind: str) -> asyncio.Future:
        if self._closed:
            raise asyncio.CancelledError(f"Bridge closed; cannot wait for {kind} at step {step_id}")

        stale = self._pending.pop(step_id, None)
        if stale is not None and not stale.future.done():
            stale.future.cancel()

        future = asyncio.get_running_loop().create_future()
        self._pending[step_id] = _PendingRequest(kind=kind, future=future)
        return future

    def _resolve(self, step_id: str, kind: str, value: str) -> bool:
        pending = self._pending.get(step_id)
        if pending is None or pending.kind != kind:
            # Stale, duplicate or out-of-order event
            logger.debug("Ignoring %s response for step %s: nothing pending", kind, step_id)
            return False

        del self._pending[step_id]
        if pending.future.done():
            return False

        self._answers[step_id] = value
        pending.future.set_result(value)
        return True

    async def _emit(self, event: Dict[str, Any]) -> None:
        result = self.emit(event)
        if inspect.isawaitable(result):
            await result
