"""Kind -> readiness evaluator lookup table.

One instance is injected into each orchestrator; there is no process-wide
singleton.  Reads are lock free; writes take a lock so registration from
several threads stays consistent.
"""

from __future__ import annotations

import threading

import structlog

from kroflow.models.resources import ReadinessEvaluator

_log = structlog.get_logger(component="readiness.registry")


class ReadinessRegistry:
    """Last registration for a kind wins."""

    def __init__(self) -> None:
        self._evaluators: dict[str, ReadinessEvaluator] = {}
        self._lock = threading.Lock()

    def register_for_kind(self, kind: str, evaluator: ReadinessEvaluator) -> None:
        with self._lock:
            replaced = kind in self._evaluators
            self._evaluators = {**self._evaluators, kind: evaluator}
        _log.debug("readiness_evaluator_registered", kind=kind, replaced=replaced)

    def get_evaluator_for_kind(self, kind: str) -> ReadinessEvaluator | None:
        return self._evaluators.get(kind)

    def has_evaluator_for_kind(self, kind: str) -> bool:
        return kind in self._evaluators

    def kinds(self) -> list[str]:
        return sorted(self._evaluators)

    def clear(self) -> None:
        with self._lock:
            self._evaluators = {}
