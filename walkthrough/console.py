"""Terminal surface for WalkthroughSession.

Renders session events with rich and answers prompt/choice events by asking
the ActionRunner, then feeds the answer back as a session message.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from rich.console import Console
from rich.text import Text

from walkthrough.engine.runner import ActionRunner

logger = logging.getLogger(__name__)

LEVEL_STYLES = {
    'info': 'dim',
    'warn': 'yellow',
    'error': 'bold red',
}

STATUS_STYLES = {
    'success': 'bold green',
    'failure': 'bold red',
    'cancel': 'bold yellow',
}


async def read_in_daemon_thread(func: Callable[..., Any], *args: Any) -> Any:
    """
    Call a blocking terminal read in a daemon thread and await its result.

    Unlike asyncio.to_thread, the thread is not joined when asyncio.run
    shuts down, so Ctrl-C at a prompt exits without waiting for Enter.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def settle(result: Any, error: Optional[BaseException]) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def read() -> None:
        try:
            result, error = func(*args), None
        except Exception as e:
            result, error = None, e
        try:
            loop.call_soon_threadsafe(settle, result, error)
        except RuntimeError:
            logger.debug("Event loop closed before %s returned", getattr(func, '__name__', func))

    threading.Thread(target=read, name="walkthrough-input", daemon=True).start()
    return await future


class ConsoleSurface:
    """
    Interactive surface backed by an ActionRunner and a rich Console.

    Attach the session after constructing both:

        surface = ConsoleSurface(runner)
        session = WalkthroughSession(scripts, store, runner, surface.emit)
        surface.session = session
    """

    def __init__(self, runner: ActionRunner, console: Optional[Console] = None):
        self.runner = runner
        self.console = console or Console()
        self.session = None
        self.events: List[Dict[str, Any]] = []
        self._answer_tasks: List[asyncio.Task] = []

    def emit(self, event: Dict[str, Any]) -> None:
        """Session event sink."""
        self.events.append(event)
        kind = event.get('type')

        if kind == 'log':
            style = LEVEL_STYLES.get(event.get('level', 'info'), '')
            self.console.print(event.get('message', ''), style=style, markup=False, highlight=False)
        elif kind == 'status':
            style = STATUS_STYLES.get(event.get('status'), '')
            self.console.print(Text.assemble((str(event.get('status')), style), ': ', event.get('message') or ''))
        elif kind == 'init':
            logger.debug("Session offers %d scripts", len(event.get('scripts') or []))
        elif kind in ('prompt', 'choice'):
            task = asyncio.get_running_loop().create_task(self._answer(event))
            self._answer_tasks.append(task)
        else:
            logger.debug("Unhandled %s event", kind)

    async def _answer(self, event: Dict[str, Any]) -> None:
        step_id = event['stepId']
        if event['type'] == 'prompt':
            value = await read_in_daemon_thread(self.runner.get_input, event['message'], event.get('defaultValue'))
            reply = {'type': 'promptResponse', 'stepId': step_id, 'value': value}
        else:
            choice_id = await read_in_daemon_thread(self.runner.choose_option, event['message'], event['options'])
            reply = {'type': 'choiceResponse', 'stepId': step_id, 'choiceId': choice_id}

        if self.session is None:
            logger.warning("No session attached; dropping answer for step %s", step_id)
            return
        self.session.handle_message(reply)
