"""Compile expression nodes into the ``${...}`` target expression language.

The renderer is a tag-dispatched visitor over the closed set of node kinds
in :mod:`kroflow.models.expressions`.  Output depends only on the node
values, so rendering the same tree twice yields the same string.

Rendering rules:

* string literals use JSON escaping and are double quoted
* operands that are themselves binary, conditional or multi-part templates
  are parenthesized
* a template concatenates its parts with ``+``; adjacent literal parts are
  merged first, empty ones dropped
* ``[N]`` in a field path renders as ``.N``
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog

from kroflow.errors import UnsupportedExpressionError
from kroflow.expressions.paths import normalize_field_path
from kroflow.models.expressions import (
    BinaryExpr,
    CallExpr,
    ConditionalExpr,
    Expression,
    LiteralExpr,
    TemplateExpr,
    VariableExpr,
    is_dynamic,
    iter_references,
)
from kroflow.models.references import Reference
from kroflow.observability.metrics import expressions_compiled_total

_log = structlog.get_logger(component="expressions.analyzer")

OPERATOR_ALIASES = {"===": "==", "!==": "!="}

SUPPORTED_OPERATORS = frozenset(
    {"==", "!=", "<", "<=", ">", ">=", "&&", "||", "+", "-", "*", "/", "%", "in"},
)

# Methods whose first argument binds a loop variable.
MACRO_METHODS = frozenset({"map", "filter", "exists", "all"})

SUPPORTED_METHODS = frozenset(
    {
        "size",
        "contains",
        "startsWith",
        "endsWith",
        "lowerAscii",
        "upperAscii",
        "join",
        "split",
        "orValue",
    }
    | MACRO_METHODS,
)


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of analyzing one configuration value.

    ``value`` mirrors the input with every dynamic leaf replaced by its
    ``${...}`` string.  ``dependencies`` lists the distinct references found,
    in first-seen order.
    """

    value: Any
    dependencies: tuple[Reference, ...] = field(default_factory=tuple)
    requires_conversion: bool = False

    @property
    def target_expression(self) -> str:
        """The rendered expression when the input was a single node."""
        if isinstance(self.value, str):
            return self.value
        return format_literal(self.value)


def canonical_operator(op: str) -> str:
    """Map source operator spellings to the target language.

    Raises:
        UnsupportedExpressionError: the operator has no target equivalent.
    """
    mapped = OPERATOR_ALIASES.get(op, op)
    if mapped not in SUPPORTED_OPERATORS:
        raise UnsupportedExpressionError(f"operator {op!r}")
    return mapped


def format_literal(value: Any) -> str:
    """Render a plain value in target literal syntax."""
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        raise UnsupportedExpressionError(f"literal of type {type(value).__name__}") from None


def stringify(value: Any) -> str:
    """Text of a value as it appears when concatenated into a string."""
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def merge_template_parts(parts: tuple[Expression, ...]) -> list[Expression]:
    """Merge adjacent literal parts into one string literal; drop empty literals."""
    merged: list[Expression] = []
    for part in parts:
        if isinstance(part, LiteralExpr):
            text = stringify(part.value)
            if not text:
                continue
            if merged and isinstance(merged[-1], LiteralExpr):
                merged[-1] = LiteralExpr(merged[-1].value + text)
            else:
                merged.append(LiteralExpr(text))
        else:
            merged.append(part)
    return merged


def _reference_text(ref: Reference) -> str:
    return f"{ref.target_id}.{normalize_field_path(ref.field_path)}"


def render_inner(node: Expression, nested: bool = False) -> str:
    """Render *node* without the ``${}`` wrapper.

    With ``nested=True``, binary, conditional and multi-part template nodes
    are parenthesized.

    Raises:
        UnsupportedExpressionError: an unknown node kind, operator or method.
    """
    if isinstance(node, LiteralExpr):
        return format_literal(node.value)
    if isinstance(node, Reference):
        return _reference_text(node)
    if isinstance(node, VariableExpr):
        if node.field_path:
            return f"{node.name}.{normalize_field_path(node.field_path)}"
        return node.name
    if isinstance(node, BinaryExpr):
        op = canonical_operator(node.op)
        text = f"{render_inner(node.left, nested=True)} {op} {render_inner(node.right, nested=True)}"
        return f"({text})" if nested else text
    if isinstance(node, ConditionalExpr):
        text = (
            f"{render_inner(node.condition, nested=True)} ? "
            f"{render_inner(node.then, nested=True)} : "
            f"{render_inner(node.otherwise, nested=True)}"
        )
        return f"({text})" if nested else text
    if isinstance(node, TemplateExpr):
        parts = merge_template_parts(node.parts)
        if not parts:
            return '""'
        if len(parts) == 1 and not isinstance(parts[0], LiteralExpr):
            return render_inner(parts[0], nested=nested)
        text = " + ".join(render_inner(part, nested=True) for part in parts)
        return f"({text})" if nested and len(parts) > 1 else text
    if isinstance(node, CallExpr):
        if node.method not in SUPPORTED_METHODS:
            raise UnsupportedExpressionError(f"method {node.method!r}")
        if node.method in MACRO_METHODS and (len(node.args) != 2 or not isinstance(node.args[0], VariableExpr)):
            raise UnsupportedExpressionError(f"{node.method}() needs a loop variable and a body")
        args = ", ".join(render_inner(arg) for arg in node.args)
        return f"{render_inner(node.target, nested=True)}.{node.method}({args})"
    raise UnsupportedExpressionError(f"node of type {type(node).__name__}")


def render_expression(node: Expression) -> str:
    """Render *node* as a complete ``${...}`` target expression."""
    return "${" + render_inner(node) + "}"


def expression_dependencies(node: object) -> tuple[Reference, ...]:
    """Distinct references under *node* in first-seen order."""
    seen: dict[Reference, None] = {}
    for ref in iter_references(node):
        seen.setdefault(ref, None)
    return tuple(seen)


def analyze(value: Any, field_path: str = "") -> ConversionResult:
    """Convert a configuration value, rewriting every dynamic leaf.

    Literal leaves (plain values and ``LiteralExpr``) pass through untouched.

    Raises:
        UnsupportedExpressionError: located at the offending field.
    """
    if is_dynamic(value):
        try:
            rendered = render_expression(value)
        except UnsupportedExpressionError as exc:
            located = exc.at(field_path or "<root>")
            _log.debug("unsupported_expression", field=located.field_path, construct=located.construct)
            raise located from None
        expressions_compiled_total.inc()
        return ConversionResult(
            value=rendered,
            dependencies=expression_dependencies(value),
            requires_conversion=True,
        )

    if isinstance(value, LiteralExpr):
        return ConversionResult(value=value.value)

    if isinstance(value, dict):
        converted: dict[Any, Any] = {}
        deps: dict[Reference, None] = {}
        needs = False
        for key, item in value.items():
            child = analyze(item, f"{field_path}.{key}" if field_path else str(key))
            converted[key] = child.value
            deps.update(dict.fromkeys(child.dependencies))
            needs = needs or child.requires_conversion
        return ConversionResult(value=converted, dependencies=tuple(deps), requires_conversion=needs)

    if isinstance(value, (list, tuple)):
        items: list[Any] = []
        deps = {}
        needs = False
        for index, item in enumerate(value):
            child = analyze(item, f"{field_path}[{index}]")
            items.append(child.value)
            deps.update(dict.fromkeys(child.dependencies))
            needs = needs or child.requires_conversion
        return ConversionResult(value=items, dependencies=tuple(deps), requires_conversion=needs)

    return ConversionResult(value=value)
