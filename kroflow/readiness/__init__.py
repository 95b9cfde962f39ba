"""Readiness evaluation: per-kind registry and built-in evaluators."""

from kroflow.readiness.evaluators import (
    condition_evaluator,
    default_registry,
    deployment_evaluator,
    safe_evaluate,
    stateful_set_evaluator,
)
from kroflow.readiness.registry import ReadinessRegistry

__all__ = [
    "ReadinessRegistry",
    "condition_evaluator",
    "default_registry",
    "deployment_evaluator",
    "safe_evaluate",
    "stateful_set_evaluator",
]
