"""Expression IR: the closed set of node kinds a configuration leaf may hold.

Configuration authors build these explicitly; nothing is inferred from
arbitrary runtime values.  Nodes are immutable once constructed.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from kroflow.models.references import Reference


@dataclass(frozen=True)
class LiteralExpr:
    """A plain value embedded in an expression."""

    value: Any


@dataclass(frozen=True)
class BinaryExpr:
    """``left <op> right`` for comparison, logical and arithmetic operators."""

    op: str
    left: Expression
    right: Expression


@dataclass(frozen=True)
class ConditionalExpr:
    """``condition ? then : otherwise``."""

    condition: Expression
    then: Expression
    otherwise: Expression


@dataclass(frozen=True)
class TemplateExpr:
    """String concatenation of literal and computed parts."""

    parts: tuple[Expression, ...]


@dataclass(frozen=True)
class CallExpr:
    """Method-style transform ``target.method(args...)``."""

    target: Expression
    method: str
    args: tuple[Expression, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class VariableExpr:
    """Variable bound by a macro such as ``map(x, x.name)``."""

    name: str
    field_path: str = ""


Expression: TypeAlias = LiteralExpr | Reference | BinaryExpr | ConditionalExpr | TemplateExpr | CallExpr | VariableExpr

EXPRESSION_TYPES = (LiteralExpr, Reference, BinaryExpr, ConditionalExpr, TemplateExpr, CallExpr, VariableExpr)

# Non-literal nodes; a configuration holding any of these needs conversion.
DYNAMIC_TYPES = (Reference, BinaryExpr, ConditionalExpr, TemplateExpr, CallExpr, VariableExpr)


def is_expression(value: object) -> bool:
    return isinstance(value, EXPRESSION_TYPES)


def is_dynamic(value: object) -> bool:
    return isinstance(value, DYNAMIC_TYPES)


def as_expression(value: object) -> Expression:
    """Wrap plain Python values as literals; pass expression nodes through."""
    if isinstance(value, EXPRESSION_TYPES):
        return value
    return LiteralExpr(value)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def lit(value: Any) -> LiteralExpr:
    return LiteralExpr(value)


def binary(op: str, left: object, right: object) -> BinaryExpr:
    return BinaryExpr(op, as_expression(left), as_expression(right))


def eq(left: object, right: object) -> BinaryExpr:
    return binary("==", left, right)


def ne(left: object, right: object) -> BinaryExpr:
    return binary("!=", left, right)


def gt(left: object, right: object) -> BinaryExpr:
    return binary(">", left, right)


def ge(left: object, right: object) -> BinaryExpr:
    return binary(">=", left, right)


def lt(left: object, right: object) -> BinaryExpr:
    return binary("<", left, right)


def le(left: object, right: object) -> BinaryExpr:
    return binary("<=", left, right)


def and_(left: object, right: object) -> BinaryExpr:
    return binary("&&", left, right)


def or_(left: object, right: object) -> BinaryExpr:
    return binary("||", left, right)


def cond(condition: object, then: object, otherwise: object) -> ConditionalExpr:
    return ConditionalExpr(as_expression(condition), as_expression(then), as_expression(otherwise))


def template(*parts: object) -> TemplateExpr:
    """``template("http://", svc_ref, ":8080")``; plain strings become literal parts."""
    return TemplateExpr(tuple(as_expression(p) for p in parts))


def call(target: object, method: str, *args: object) -> CallExpr:
    return CallExpr(as_expression(target), method, tuple(as_expression(a) for a in args))


def var(name: str, field_path: str = "") -> VariableExpr:
    return VariableExpr(name, field_path)


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


def child_expressions(node: Expression) -> tuple[Expression, ...]:
    """Direct sub-expressions of *node*, in rendering order."""
    if isinstance(node, BinaryExpr):
        return (node.left, node.right)
    if isinstance(node, ConditionalExpr):
        return (node.condition, node.then, node.otherwise)
    if isinstance(node, TemplateExpr):
        return node.parts
    if isinstance(node, CallExpr):
        return (node.target, *node.args)
    return ()


def iter_references(value: object) -> Iterator[Reference]:
    """Yield every Reference embedded in *value*, depth first, in order.

    *value* may be an expression node or a plain tree of dicts, lists and
    scalars whose leaves are expression nodes.
    """
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, EXPRESSION_TYPES):
        for child in child_expressions(value):
            yield from iter_references(child)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)
