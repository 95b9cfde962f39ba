"""Evaluate expression nodes against live values (direct deployment mode)."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from kroflow.errors import ExpressionEvaluationError, UnsupportedExpressionError
from kroflow.expressions.analyzer import MACRO_METHODS, SUPPORTED_METHODS, canonical_operator, stringify
from kroflow.expressions.paths import get_field
from kroflow.models.expressions import (
    BinaryExpr,
    CallExpr,
    ConditionalExpr,
    Expression,
    LiteralExpr,
    TemplateExpr,
    VariableExpr,
    is_dynamic,
)
from kroflow.models.references import Reference

Resolver = Callable[[Reference], Any]


def _int_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b > 0) else -quotient


def _apply_operator(op: str, left: Any, right: Any) -> Any:
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    if op == ">=":
        return left >= right
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        if isinstance(left, int) and isinstance(right, int) and not isinstance(left, bool):
            return _int_div(left, right)
        return left / right
    if op == "%":
        if isinstance(left, int) and isinstance(right, int):
            return left - right * _int_div(left, right)
        return left % right
    if op == "in":
        return left in right
    raise UnsupportedExpressionError(f"operator {op!r}")


class ExpressionEvaluator:
    """Evaluates one expression tree.

    ``resolve`` turns a Reference into its current live value; it is the
    orchestrator's hook into already-applied resources.
    """

    def __init__(self, resolve: Resolver) -> None:
        self._resolve = resolve

    def evaluate(self, node: Expression, variables: Mapping[str, Any] | None = None) -> Any:
        scope = variables or {}
        if isinstance(node, LiteralExpr):
            return node.value
        if isinstance(node, Reference):
            return self._resolve(node)
        if isinstance(node, VariableExpr):
            if node.name not in scope:
                raise ExpressionEvaluationError(f"Unbound variable {node.name!r}", {"variable": node.name})
            value = scope[node.name]
            return get_field(value, node.field_path) if node.field_path else value
        if isinstance(node, BinaryExpr):
            return self._binary(node, scope)
        if isinstance(node, ConditionalExpr):
            if self.evaluate(node.condition, scope):
                return self.evaluate(node.then, scope)
            return self.evaluate(node.otherwise, scope)
        if isinstance(node, TemplateExpr):
            return "".join(stringify(self.evaluate(part, scope)) for part in node.parts)
        if isinstance(node, CallExpr):
            return self._call(node, scope)
        raise UnsupportedExpressionError(f"node of type {type(node).__name__}")

    def _binary(self, node: BinaryExpr, scope: Mapping[str, Any]) -> Any:
        op = canonical_operator(node.op)
        left = self.evaluate(node.left, scope)
        # Logical operators short-circuit.
        if op == "&&":
            return bool(left) and bool(self.evaluate(node.right, scope))
        if op == "||":
            return bool(left) or bool(self.evaluate(node.right, scope))
        right = self.evaluate(node.right, scope)
        try:
            return _apply_operator(op, left, right)
        except (TypeError, ZeroDivisionError) as exc:
            raise ExpressionEvaluationError(
                f"Cannot evaluate {left!r} {op} {right!r}: {exc}",
                {"operator": op},
            ) from exc

    def _call(self, node: CallExpr, scope: Mapping[str, Any]) -> Any:
        method = node.method
        if method not in SUPPORTED_METHODS:
            raise UnsupportedExpressionError(f"method {method!r}")
        target = self.evaluate(node.target, scope)

        if method == "orValue":
            return target if target is not None else self.evaluate(node.args[0], scope)
        if target is None:
            raise ExpressionEvaluationError(f"Cannot call {method}() on a missing value", {"method": method})

        if method in MACRO_METHODS:
            return self._macro(node, target, scope)

        args = [self.evaluate(arg, scope) for arg in node.args]
        try:
            if method == "size":
                return len(target)
            if method == "contains":
                return args[0] in target
            if method == "startsWith":
                return target.startswith(args[0])
            if method == "endsWith":
                return target.endswith(args[0])
            if method == "lowerAscii":
                return target.lower()
            if method == "upperAscii":
                return target.upper()
            if method == "join":
                separator = args[0] if args else ""
                return separator.join(stringify(item) for item in target)
            # split
            return target.split(args[0])
        except (TypeError, AttributeError, IndexError) as exc:
            raise ExpressionEvaluationError(f"{method}() failed: {exc}", {"method": method}) from exc

    def _macro(self, node: CallExpr, target: Any, scope: Mapping[str, Any]) -> Any:
        if len(node.args) != 2 or not isinstance(node.args[0], VariableExpr):
            raise UnsupportedExpressionError(f"{node.method}() needs a loop variable and a body")
        name = node.args[0].name
        body = node.args[1]
        if not isinstance(target, (list, tuple)):
            raise ExpressionEvaluationError(f"{node.method}() needs a list, got {type(target).__name__}")

        def run(item: Any) -> Any:
            return self.evaluate(body, {**scope, name: item})

        if node.method == "map":
            return [run(item) for item in target]
        if node.method == "filter":
            return [item for item in target if run(item)]
        if node.method == "exists":
            return any(run(item) for item in target)
        return all(run(item) for item in target)


def evaluate(node: Expression, resolve: Resolver) -> Any:
    return ExpressionEvaluator(resolve).evaluate(node)


def resolve_value(value: Any, resolve: Resolver, field_path: str = "") -> Any:
    """Copy of *value* with every expression leaf replaced by its live value.

    Raises:
        ExpressionEvaluationError: an expression failed; the message names the field.
    """
    if is_dynamic(value):
        try:
            return evaluate(value, resolve)
        except ExpressionEvaluationError as exc:
            raise ExpressionEvaluationError(
                f"{field_path or '<root>'}: {exc}", {**exc.context, "field": field_path}
            ) from exc
    if isinstance(value, LiteralExpr):
        return value.value
    if isinstance(value, dict):
        return {
            key: resolve_value(item, resolve, f"{field_path}.{key}" if field_path else str(key))
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, resolve, f"{field_path}[{i}]") for i, item in enumerate(value)]
    return value
