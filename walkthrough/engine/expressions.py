"""Default expression evaluator for ``when`` guards and assert steps.

Expressions are a restricted subset of Python evaluated against the run's
variables, exposed as ``vars``:

    vars.name == "alice"
    len(vars.name) > 0 and vars['mode'] in ("fast", "safe")
    vars.branch.startswith("release/")

Arithmetic, comprehensions, lambdas and underscore attributes are rejected.
"""

import ast
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .context import RunnerContext
from .errors import ExpressionError

logger = logging.getLogger(__name__)

_ALLOWED_NODES = (
    ast.Expression, ast.BoolOp, ast.UnaryOp, ast.Compare,
    ast.Name, ast.Load, ast.Constant, ast.List, ast.Tuple,
    ast.Attribute, ast.Subscript, ast.Call,
    ast.And, ast.Or, ast.Not, ast.USub,
    ast.Eq, ast.NotEq, ast.Lt, ast.LtE, ast.Gt, ast.GtE,
    ast.In, ast.NotIn, ast.Is, ast.IsNot,
)

_FUNCTIONS: Dict[str, Callable] = {
    'len': len,
    'int': int,
    'float': float,
    'str': str,
    'bool': bool,
}

_METHODS = frozenset({'lower', 'upper', 'strip', 'startswith', 'endswith'})


class VarsView:
    """Read-only view of run variables; missing names read as None."""

    def __init__(self, values: Mapping[str, str]):
        self._values = values

    def __getattr__(self, name: str) -> Optional[str]:
        if name.startswith('_'):
            raise AttributeError(name)
        return self._values.get(name)

    def __getitem__(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._values


class ExpressionEvaluator:
    """Parses and evaluates guard expressions against run variables."""

    def __init__(self, max_length: int = 1024):
        self.max_length = max_length

    def _check(self, expression: str) -> ast.Expression:
        if len(expression) > self.max_length:
            raise ExpressionError(f"Expression too long ({len(expression)} > {self.max_length})")

        try:
            tree = ast.parse(expression.strip(), mode='eval')
        except SyntaxError as e:
            raise ExpressionError(f"Invalid expression {expression!r}: {e.msg}") from e

        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise ExpressionError(f"Unsupported syntax in {expression!r}: {type(node).__name__}")
            if isinstance(node, ast.Name) and node.id != 'vars' and node.id not in _FUNCTIONS:
                raise ExpressionError(f"Unknown name {node.id!r} in {expression!r}")
            if isinstance(node, ast.Attribute) and node.attr.startswith('_'):
                raise ExpressionError(f"Private attribute {node.attr!r} in {expression!r}")
            if isinstance(node, ast.Call):
                func = node.func
                allowed = (
                    (isinstance(func, ast.Name) and func.id in _FUNCTIONS)
                    or (isinstance(func, ast.Attribute) and func.attr in _METHODS)
                )
                if not allowed or node.keywords:
                    raise ExpressionError(f"Unsupported call in {expression!r}")

        return tree

    def evaluate(self, expression: str, variables: Mapping[str, str]) -> bool:
        """
        Evaluate an expression.

        Args:
            expression: Guard or assert expression
            variables: Current run variables

        Returns:
            Truthiness of the expression result

        Raises:
            ExpressionError: If the expression is rejected or fails
        """
        tree = self._check(expression)
        scope: Dict[str, Any] = {'vars': VarsView(variables)}
        scope.update(_FUNCTIONS)

        try:
            value = eval(compile(tree, '<expression>', 'eval'), {'__builtins__': {}}, scope)
        except Exception as e:
            raise ExpressionError(f"Error evaluating {expression!r}: {e}") from e

        return bool(value)

    def as_hook(
        self, on_error: Optional[Callable[[str], Any]] = None
    ) -> Callable[[str, RunnerContext], Awaitable[bool]]:
        """
        Build an ``evaluate`` hook.

        Evaluation errors are reported through ``on_error`` and treated as
        false, so a broken guard skips its step and a broken assert fails.

        Args:
            on_error: Called with the error message (sync or async)

        Returns:
            Hook taking (expression, ctx)
        """
        async def evaluate(expression: str, ctx: RunnerContext) -> bool:
            try:
                return self.evaluate(expression, ctx.vars)
            except ExpressionError as e:
                logger.warning("%s", e)
                if on_error is not None:
                    reported = on_error(f"Eval error: {e}")
                    if inspect.isawaitable(reported):
                        await reported
                return False

        return evaluate
