"""ActionRunner - the terminal and process side of a walkthrough.

Engines and sessions never touch stdin, stdout or subprocesses directly; they
go through a runner so tests can swap in MockActionRunner.
"""

import asyncio
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .context import CommandResult, RunnerContext
from .hooks import EvaluateHook, RunnerHooks

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


def _option_field(option: Any, name: str) -> str:
    if isinstance(option, dict):
        return option.get(name, '')
    return getattr(option, name, '')


class ActionRunner(ABC):
    """Side effects a walkthrough may need."""

    @abstractmethod
    def display(self, message: str) -> None:
        """Show ``message`` (may span several lines)."""

    @abstractmethod
    def get_input(self, prompt: str, default: Optional[str] = None) -> str:
        """Ask a free-text question.

        Args:
            prompt: Question text
            default: Answer used when the reply is empty

        Returns:
            The reply, or ``default`` for an empty reply
        """

    @abstractmethod
    def choose_option(self, message: str, options: List[Any]) -> str:
        """Ask the user to pick one of ``options``.

        Returns:
            The chosen option's id
        """

    @abstractmethod
    def run_shell(self, command: List[str], cwd: Optional[str] = None) -> Dict[str, Any]:
        """Run ``command`` (argv list) and capture its output.

        Returns:
            Dict with 'stdout', 'stderr' and 'returncode'
        """

    def exec_command(
        self,
        command: str,
        args: Optional[List[str]] = None,
        cwd: Optional[str] = None,
        ctx: Optional[RunnerContext] = None,
    ) -> CommandResult:
        """exec_command hook backed by run_shell."""
        return CommandResult.model_validate(self.run_shell([command] + list(args or []), cwd=cwd))

    def as_hooks(self, evaluate: Optional[EvaluateHook] = None) -> RunnerHooks:
        """
        Adapt this runner into an engine hook set.

        Args:
            evaluate: Expression hook for guards and asserts

        Returns:
            RunnerHooks calling back into this runner
        """
        return RunnerHooks(
            prompt=lambda message, default, ctx: self.get_input(message, default),
            choose=lambda message, options, ctx: self.choose_option(message, options),
            exec_command=self.exec_command,
            evaluate=evaluate,
            log=self.display,
        )


class RealActionRunner(ActionRunner):
    """Terminal and subprocess implementation."""

    def __init__(self, verbose: bool = False, timeout: Optional[float] = 20.0):
        """
        Args:
            verbose: Echo each command and its working directory first
            timeout: Seconds before a command is killed (None waits forever)
        """
        self.verbose = verbose or bool(os.environ.get('WALKTHROUGH_VERBOSE'))
        self.timeout = timeout

    def display(self, message: str) -> None:
        print(message)

    def get_input(self, prompt: str, default: Optional[str] = None) -> str:
        suffix = f" [{default}]" if default is not None else ""
        reply = input(f"{prompt}{suffix}: ").strip()
        print()
        if not reply and default is not None:
            return str(default)
        return reply

    def choose_option(self, message: str, options: List[Any]) -> str:
        """List numbered options and ask until the reply names one."""
        ids = [_option_field(option, 'id') for option in options]

        while True:
            self.display("")
            self.display(message)
            for number, option in enumerate(options, 1):
                self.display(f"  {number}. {_option_field(option, 'label')}")
            self.display("")

            reply = self.get_input("Select an option")

            # Either the list number or the option id
            if reply.isdigit() and 1 <= int(reply) <= len(options):
                return ids[int(reply) - 1]
            if reply in ids:
                return reply

            self.display(f"Error: '{reply}' is not one of the options")

    def run_shell(self, command: List[str], cwd: Optional[str] = None) -> Dict[str, Any]:
        if self.verbose:
            print(f"[VERBOSE] $ {' '.join(command)}  (cwd: {cwd or os.getcwd()})")

        try:
            completed = subprocess.run(command, cwd=cwd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as e:
            # Executable or working directory missing
            logger.debug("Cannot start %s in %s: %s", command[0], cwd, e)
            return {'stdout': '', 'stderr': f"FileNotFoundError: {e}", 'returncode': EXIT_NOT_FOUND}
        except subprocess.TimeoutExpired as e:
            return {
                'stdout': e.stdout if isinstance(e.stdout, str) else '',
                'stderr': f"Command timed out after {self.timeout}s: {' '.join(command)}",
                'returncode': EXIT_TIMEOUT,
            }
        except OSError as e:
            return {'stdout': '', 'stderr': f"{type(e).__name__}: {e}", 'returncode': 1}

        return {'stdout': completed.stdout, 'stderr': completed.stderr, 'returncode': completed.returncode}

    async def exec_command(
        self,
        command: str,
        args: Optional[List[str]] = None,
        cwd: Optional[str] = None,
        ctx: Optional[RunnerContext] = None,
    ) -> CommandResult:
        """Run the command in a worker thread so the event loop stays free."""
        result = await asyncio.to_thread(self.run_shell, [command] + list(args or []), cwd)
        return CommandResult.model_validate(result)


class MockActionRunner(ActionRunner):
    """
    Scripted runner for tests. Every call is appended to ``calls``.

    - ``input_queue``: replies for get_input, in order
    - ``choice_queue``: option ids for choose_option, in order
    - ``responses['run_shell']``: either one result dict for every command,
      or results keyed by argv tuple with an optional 'default' entry
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.responses: Dict[str, Any] = {}
        self.input_queue: List[str] = []
        self.choice_queue: List[str] = []

    def display(self, message: str) -> None:
        self.calls.append(('display', message))

    def get_input(self, prompt: str, default: Optional[str] = None) -> str:
        self.calls.append(('get_input', prompt, default))

        reply = self.input_queue.pop(0) if self.input_queue else ''
        # Empty replies take the default, as on a real terminal
        return reply or default or ''

    def choose_option(self, message: str, options: List[Any]) -> str:
        self.calls.append(('choose_option', message, [_option_field(o, 'id') for o in options]))

        if self.choice_queue:
            return self.choice_queue.pop(0)
        return _option_field(options[0], 'id')

    def run_shell(self, command: List[str], cwd: Optional[str] = None) -> Dict[str, Any]:
        self.calls.append(('run_shell', command, cwd))

        scripted = self.responses.get('run_shell')
        if not scripted:
            return {'stdout': '', 'stderr': '', 'returncode': 0}

        if 'returncode' in scripted:
            return scripted

        key = tuple(command)
        if key in scripted:
            result = scripted[key]
            # A bare string is the stdout of a successful command
            if isinstance(result, dict) and 'returncode' in result:
                return result
            return {'stdout': result, 'stderr': '', 'returncode': 0}

        return scripted.get('default', {'stdout': '', 'stderr': '', 'returncode': 0})
