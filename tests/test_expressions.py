"""Tests for the guard/assert expression evaluator."""

import pytest

from walkthrough.engine.context import RunnerContext
from walkthrough.engine.errors import ExpressionError
from walkthrough.engine.expressions import ExpressionEvaluator


@pytest.fixture
def evaluator():
    return ExpressionEvaluator()


@pytest.mark.parametrize("expression,variables,expected", [
    ('vars.name == "alice"', {'name': 'alice'}, True),
    ("vars['name'] == 'alice'", {'name': 'bob'}, False),
    ('len(vars.name) > 0', {'name': 'x'}, True),
    ('vars.missing is None', {}, True),
    ('not vars.flag', {}, True),
    ('vars.mode in ("fast", "safe")', {'mode': 'safe'}, True),
    ('int(vars.count) >= 3 and vars.ok == "yes"', {'count': '3', 'ok': 'yes'}, True),
    ('vars.branch.startswith("release/")', {'branch': 'release/1.2'}, True),
    ('vars.answer.strip().lower() == "y"', {'answer': ' Y '}, True),
    ('int(vars.delta) > -1', {'delta': '0'}, True),
    ('vars.name', {'name': ''}, False),
])
def test_evaluate(evaluator, expression, variables, expected):
    assert evaluator.evaluate(expression, variables) is expected


class TestRejectedExpressions:
    """Anything outside the whitelisted subset raises ExpressionError."""

    @pytest.mark.parametrize("expression", [
        '__import__("os").system("true")',
        'vars.__class__',
        'open("/etc/passwd")',
        '[x for x in "abc"]',
        'lambda: 1',
        'vars.name.replace("a", "b")',
        'len(vars.name, key=1)',
        '1 + 1',
    ])
    def test_unsafe_syntax(self, evaluator, expression):
        with pytest.raises(ExpressionError):
            evaluator.evaluate(expression, {'name': 'x'})

    def test_syntax_error(self, evaluator):
        with pytest.raises(ExpressionError, match="Invalid expression"):
            evaluator.evaluate('vars.name ==', {})

    def test_runtime_error(self, evaluator):
        with pytest.raises(ExpressionError, match="Error evaluating"):
            evaluator.evaluate('int(vars.count) > 1', {'count': 'many'})

    def test_too_long(self):
        with pytest.raises(ExpressionError, match="too long"):
            ExpressionEvaluator(max_length=10).evaluate('vars.name == "alice"', {})


class TestAsHook:

    @pytest.mark.asyncio
    async def test_reads_context_vars(self, evaluator):
        hook = evaluator.as_hook()

        assert await hook('vars.name == "alice"', RunnerContext(vars={'name': 'alice'})) is True

    @pytest.mark.asyncio
    async def test_error_reported_and_false(self, evaluator):
        reported = []
        hook = evaluator.as_hook(on_error=reported.append)

        assert await hook('vars.name ==', RunnerContext()) is False
        assert len(reported) == 1
        assert reported[0].startswith('Eval error:')

    @pytest.mark.asyncio
    async def test_async_error_callback_awaited(self, evaluator):
        reported = []

        async def on_error(message):
            reported.append(message)

        hook = evaluator.as_hook(on_error=on_error)

        assert await hook('1 + 1', RunnerContext()) is False
        assert reported
