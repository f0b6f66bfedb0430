"""Tests for WalkthroughSession - runs hosted for an interactive surface.

Test philosophy:
- Drive the session only through its message protocol (handle_message)
- Use MockActionRunner for every command
- Check both the outbound events and what lands in the state store
"""

import asyncio

import pytest

from walkthrough.engine.context import CommandResult
from walkthrough.engine.loader import normalize_scripts
from walkthrough.engine.runner import MockActionRunner
from walkthrough.engine.session import WalkthroughSession
from walkthrough.engine.state import MemoryRunStateStore, SavedRunState, state_key
from walkthrough.utils.diagnostics import DiagnosticCollector

GREETING = {
    'id': 'greet',
    'name': 'Greeting',
    'steps': [
        {'id': 's1', 'type': 'prompt', 'message': 'Name?', 'variable': 'name'},
        {'id': 's2', 'type': 'choice', 'message': 'Go?', 'options': [
            {'id': 'a', 'label': 'A', 'goto': 's3'},
            {'id': 'b', 'label': 'B', 'goto': 'quit'},
        ]},
        {'id': 's3', 'type': 'end', 'status': 'success', 'message': 'done'},
        {'id': 'quit', 'type': 'end', 'status': 'cancel', 'message': 'bye'},
    ],
}

BUILD = {
    'id': 'build',
    'name': 'Build',
    'steps': [
        {'id': 'make', 'type': 'command', 'command': 'make'},
        {'id': 'check', 'type': 'assert', 'expression': 'vars.target == "prod"', 'message': 'Wrong target'},
    ],
}


CLEANUP = {
    'id': 'cleanup',
    'name': 'Cleanup',
    'steps': [
        {'id': 'c1', 'type': 'command', 'command': 'slow'},
        {'id': 'c2', 'type': 'command', 'command': 'rm-everything'},
        {'id': 'e', 'type': 'end', 'message': 'clean'},
    ],
}


class SlowCommandRunner(MockActionRunner):
    """Every command blocks until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def exec_command(self, command, args=None, cwd=None, ctx=None):
        self.calls.append(('exec_command', command))
        self.started.set()
        await self.release.wait()
        return CommandResult(code=0)


async def wait_for_pending(session, step_id, timeout=1.0):
    """Yield until the active run is waiting on ``step_id``."""
    deadline = asyncio.get_running_loop().time() + timeout
    while session.bridge is None or not session.bridge.has_pending(step_id):
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"step {step_id} never became pending")
        await asyncio.sleep(0.01)


@pytest.fixture
def events():
    return []


@pytest.fixture
def store():
    return MemoryRunStateStore()


@pytest.fixture
def runner():
    return MockActionRunner()


@pytest.fixture
def session(events, store, runner):
    return WalkthroughSession(
        normalize_scripts([GREETING, BUILD]),
        store,
        runner,
        events.append,
        workspace='/work',
        diagnostics=DiagnosticCollector(),
    )


def _of_type(events, kind):
    return [e for e in events if e['type'] == kind]


async def _answer_greeting(session, name='alice', choice='a'):
    await wait_for_pending(session, 's1')
    session.handle_message({'type': 'promptResponse', 'stepId': 's1', 'value': name})
    await wait_for_pending(session, 's2')
    session.handle_message({'type': 'choiceResponse', 'stepId': 's2', 'choiceId': choice})


@pytest.mark.asyncio
async def test_initialize_announces_scripts_and_state(session, events, store):
    store.update(state_key('/work'), SavedRunState(script_id='greet'))

    await session.initialize()

    init = events[0]
    assert init['type'] == 'init'
    assert [s['id'] for s in init['scripts']] == ['greet', 'build']
    assert init['state']['scriptId'] == 'greet'


@pytest.mark.asyncio
async def test_interactive_run(session, events, store):
    """A start message runs the script; responses settle its prompts."""
    task = session.handle_message({'type': 'start', 'scriptId': 'greet'})
    await _answer_greeting(session)
    result = await task

    assert result.status == 'success'
    assert result.vars == {'name': 'alice'}
    assert result.steps_run == 3

    assert events[0] == {'type': 'busy', 'value': True}
    assert events[1] == {'type': 'reset'}
    assert _of_type(events, 'prompt')[0]['stepId'] == 's1'
    assert _of_type(events, 'status')[-1] == {'type': 'status', 'status': 'success', 'message': 'done'}
    assert events[-1] == {'type': 'busy', 'value': False}

    saved = store.get(state_key('/work'))
    assert saved.script_id == 'greet'
    assert saved.answers == {'s1': 'alice', 's2': 'a'}
    assert saved.vars == {'name': 'alice'}
    assert saved.last_status == 'success'
    assert session.is_running is False


@pytest.mark.asyncio
async def test_resume_replays_saved_answers(session, events):
    """Replay determinism: a resumed run reproduces the first run's outcome."""
    task = session.handle_message({'type': 'start', 'scriptId': 'greet'})
    await _answer_greeting(session)
    first = await task

    events.clear()
    second = await session.resume('greet')

    assert second == first
    assert _of_type(events, 'prompt') == []
    assert _of_type(events, 'choice') == []
    messages = [e['message'] for e in _of_type(events, 'log')]
    assert 'Replaying saved answer for s1' in messages
    assert 'Replaying saved choice for s2' in messages


@pytest.mark.asyncio
async def test_resume_other_script_starts_fresh(session, events, store):
    store.update(state_key('/work'), SavedRunState(script_id='build', answers={'s1': 'stale'}))
    await session.initialize()

    task = session.handle_message({'type': 'resume', 'scriptId': 'greet'})
    await wait_for_pending(session, 's1')

    assert any('No saved run for greet' in e['message'] for e in _of_type(events, 'log'))

    session.handle_message({'type': 'promptResponse', 'stepId': 's1', 'value': 'fresh'})
    await wait_for_pending(session, 's2')
    session.handle_message({'type': 'choiceResponse', 'stepId': 's2', 'choiceId': 'a'})
    result = await task

    assert result.vars == {'name': 'fresh'}


@pytest.mark.asyncio
async def test_restart_clears_saved_state(session, store):
    store.update(state_key('/work'), SavedRunState(script_id='greet', answers={'s1': 'old', 's2': 'a'}))
    await session.initialize()

    task = session.handle_message({'type': 'restart', 'scriptId': 'greet'})
    await _answer_greeting(session, name='new')
    result = await task

    assert result.vars == {'name': 'new'}
    assert store.get(state_key('/work')).answers == {'s1': 'new', 's2': 'a'}


@pytest.mark.asyncio
async def test_initial_vars_seed_run(session, runner):
    result = await session.start('build', initial_vars={'target': 'prod'})

    assert result.status == 'success'
    assert result.vars == {'target': 'prod'}
    assert runner.calls == [('run_shell', ['make'], '/work')]


@pytest.mark.asyncio
async def test_second_run_refused(session, events):
    task = session.handle_message({'type': 'start', 'scriptId': 'greet'})
    await wait_for_pending(session, 's1')

    assert await session.start('build') is None
    assert any(e['level'] == 'warn' and 'already in progress' in e['message'] for e in _of_type(events, 'log'))

    session.handle_message({'type': 'promptResponse', 'stepId': 's1', 'value': 'x'})
    await wait_for_pending(session, 's2')
    session.handle_message({'type': 'choiceResponse', 'stepId': 's2', 'choiceId': 'b'})
    result = await task

    assert result.status == 'cancel'


@pytest.mark.asyncio
async def test_unknown_script_falls_back_to_first(session):
    task = session.handle_message({'type': 'start', 'scriptId': 'nope'})
    await wait_for_pending(session, 's1')

    session.abandon()

    assert await task is None


@pytest.mark.asyncio
async def test_no_scripts(store, runner, events):
    session = WalkthroughSession([], store, runner, events.append)

    assert await session.start() is None
    assert events == [{'type': 'log', 'level': 'error', 'message': 'No walkthrough scripts available.'}]


class TestFailures:
    """Errors escaping a run become a terminal failure state."""

    @pytest.mark.asyncio
    async def test_command_failure(self, session, events, runner, store):
        runner.responses['run_shell'] = {('make',): {'stdout': '', 'stderr': 'no rule', 'returncode': 2}}

        result = await session.start('build')

        assert result.status == 'failure'
        assert result.last_message == 'no rule'
        assert {'type': 'log', 'level': 'error', 'message': 'no rule'} in events
        assert store.get(state_key('/work')).last_status == 'failure'

    @pytest.mark.asyncio
    async def test_assertion_failure_persisted(self, session, events, store):
        result = await session.start('build', initial_vars={'target': 'dev'})

        assert result is None
        assert _of_type(events, 'status')[-1] == {'type': 'status', 'status': 'failure', 'message': 'Wrong target'}
        saved = store.get(state_key('/work'))
        assert saved.last_status == 'failure'
        assert saved.last_message == 'Wrong target'
        assert saved.vars == {'target': 'dev'}
        assert session.diagnostics.failures[0]['step'] == 'check'
        assert session.is_running is False

    @pytest.mark.asyncio
    async def test_invalid_script_reported(self, store, runner, events):
        scripts = normalize_scripts([{'id': 'bad', 'steps': [{'id': 'g', 'type': 'goto', 'target': 'nowhere'}]}])
        session = WalkthroughSession(scripts, store, runner, events.append)

        assert await session.start() is None
        assert _of_type(events, 'status')[-1]['message'] == 'Unknown step target: nowhere'
        assert session.diagnostics.failures[0]['step'] == '<validation>'

    @pytest.mark.asyncio
    async def test_eval_error_logged(self, store, runner, events):
        scripts = normalize_scripts([{'id': 'guarded', 'steps': [
            {'id': 'e', 'type': 'end', 'status': 'failure', 'when': 'vars.x >'},
        ]}])
        session = WalkthroughSession(scripts, store, runner, events.append)

        result = await session.start()

        assert result.status == 'success'
        assert any(e['message'].startswith('Eval error:') for e in _of_type(events, 'log'))

    @pytest.mark.asyncio
    async def test_emit_errors_do_not_abort_run(self, store, runner):
        def emit(event):
            raise RuntimeError("surface gone")

        session = WalkthroughSession(normalize_scripts([BUILD]), store, runner, emit)

        result = await session.start(initial_vars={'target': 'prod'})

        assert result.status == 'success'


class TestMessages:

    @pytest.mark.asyncio
    async def test_malformed_message_ignored(self, session, events):
        assert session.handle_message({'type': 'explode'}) is None
        assert session.handle_message({'type': 'promptResponse'}) is None
        assert events == []

    @pytest.mark.asyncio
    async def test_response_without_run_ignored(self, session):
        assert session.handle_message({'type': 'promptResponse', 'stepId': 's1', 'value': 'x'}) is None

    @pytest.mark.asyncio
    async def test_stale_response_ignored(self, session):
        task = session.handle_message({'type': 'start', 'scriptId': 'greet'})
        await wait_for_pending(session, 's1')

        session.handle_message({'type': 'choiceResponse', 'stepId': 's1', 'choiceId': 'a'})
        session.handle_message({'type': 'promptResponse', 'stepId': 'other', 'value': 'x'})

        assert session.bridge.has_pending('s1')
        session.abandon()
        await task


class TestAbandon:

    @pytest.mark.asyncio
    async def test_abandon_cancels_pending_prompt(self, session, events, store):
        task = session.handle_message({'type': 'start', 'scriptId': 'greet'})
        await wait_for_pending(session, 's1')
        session.handle_message({'type': 'promptResponse', 'stepId': 's1', 'value': 'alice'})
        await wait_for_pending(session, 's2')

        session.dispose()
        result = await task

        assert result is None
        assert _of_type(events, 'status')[-1]['status'] == 'cancel'
        saved = store.get(state_key('/work'))
        assert saved.last_status == 'cancel'
        assert saved.answers == {'s1': 'alice'}
        assert saved.vars == {'name': 'alice'}
        assert events[-1] == {'type': 'busy', 'value': False}
        assert session.bridge is None

    @pytest.mark.asyncio
    async def test_abandon_during_command_stops_run(self, events, store):
        runner = SlowCommandRunner()
        session = WalkthroughSession(
            normalize_scripts([CLEANUP]), store, runner, events.append, workspace='/work',
        )
        task = session.handle_message({'type': 'start', 'scriptId': 'cleanup'})
        await asyncio.wait_for(runner.started.wait(), timeout=1.0)

        session.abandon()
        runner.release.set()
        result = await task

        assert result is None
        assert runner.calls == [('exec_command', 'slow')]
        assert _of_type(events, 'status')[-1] == {'type': 'status', 'status': 'cancel', 'message': 'Run abandoned'}
        assert store.get(state_key('/work')).last_status == 'cancel'
        assert session.is_running is False

    @pytest.mark.asyncio
    async def test_abandon_from_surface_callback_runs_no_command(self, store, runner):
        """A surface may give up from inside its event handler."""
        def emit(event):
            if event.get('message', '').startswith('Running script'):
                session.abandon()

        session = WalkthroughSession(normalize_scripts([CLEANUP]), store, runner, emit, workspace='/work')

        result = await session.start('cleanup')

        assert result is None
        assert runner.calls == []
        assert store.get(state_key('/work')).last_status == 'cancel'

    @pytest.mark.asyncio
    async def test_new_run_after_abandon(self, session):
        task = session.handle_message({'type': 'start', 'scriptId': 'greet'})
        await wait_for_pending(session, 's1')
        session.abandon()
        await task

        result = await session.start('build', initial_vars={'target': 'prod'})

        assert result.status == 'success'

    def test_abandon_without_run(self, session):
        session.abandon()

        assert session.is_running is False
