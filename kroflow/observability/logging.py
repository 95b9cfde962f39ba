"""structlog setup for kroflow.

Library modules log through loggers bound with a ``component`` name and
never configure output themselves; an application calls
:func:`setup_logging` once at startup.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from kroflow.models.config import LogConfig

_FORMATS = ("json", "console")


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure structlog output on stderr.

    ``json`` emits one object per line with an ISO-8601 UTC ``ts`` key;
    ``console`` renders key=value lines for interactive use.
    """
    config = config or LogConfig()
    if config.format not in _FORMATS:
        raise ValueError(f"Invalid log format: {config.format}. Must be one of {_FORMATS}")
    log_level = getattr(logging, config.level.upper(), logging.INFO)
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if config.format == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(component=component)  # type: ignore[no-any-return]


@contextmanager
def deployment_context(deployment_id: str) -> Iterator[None]:
    """Attach ``deployment_id`` to every log line emitted inside the block.

    Tasks created inside the block inherit the binding.
    """
    with structlog.contextvars.bound_contextvars(deployment_id=deployment_id):
        yield
