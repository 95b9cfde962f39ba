"""Expression compilation (``${...}``) and live evaluation."""

from kroflow.expressions.analyzer import (
    ConversionResult,
    analyze,
    expression_dependencies,
    render_expression,
    render_inner,
)
from kroflow.expressions.evaluator import ExpressionEvaluator, evaluate, resolve_value
from kroflow.expressions.paths import get_field, normalize_field_path

__all__ = [
    "ConversionResult",
    "ExpressionEvaluator",
    "analyze",
    "evaluate",
    "expression_dependencies",
    "get_field",
    "normalize_field_path",
    "render_expression",
    "render_inner",
    "resolve_value",
]
