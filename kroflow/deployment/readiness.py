"""Poll a resource until its readiness evaluator is satisfied."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from kroflow.client import ClusterClient
from kroflow.errors import ClusterApiError, ClusterNotFoundError, ReadinessFailureError, ReadinessTimeoutError
from kroflow.models.deployment import ReadinessResult
from kroflow.models.resources import ReadinessEvaluator
from kroflow.readiness.evaluators import safe_evaluate

_log = structlog.get_logger(component="deployment.readiness")

StatusCallback = Callable[[ReadinessResult], Awaitable[None]]


async def wait_until_ready(
    client: ClusterClient,
    evaluator: ReadinessEvaluator,
    *,
    resource_id: str,
    api_version: str,
    kind: str,
    name: str,
    namespace: str | None,
    timeout: float,
    poll_interval: float,
    on_status: StatusCallback | None = None,
) -> tuple[ReadinessResult, dict[str, Any]]:
    """Read live state every *poll_interval* seconds and evaluate it.

    Not-found and transient read errors keep polling.  The state is always
    checked at least once, even with a zero budget.

    Returns:
        The ready verdict and the live state it was computed from.

    Raises:
        ReadinessFailureError: the evaluator reported a terminal failure.
        ReadinessTimeoutError: *timeout* elapsed first.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(timeout, 0.0)
    last: ReadinessResult | None = None
    polls = 0

    while True:
        polls += 1
        try:
            live = await client.read(api_version, kind, name, namespace)
        except ClusterNotFoundError:
            result = ReadinessResult(ready=False, reason="NotFound", message=f"{kind}/{name} not found yet")
            live = None
        except ClusterApiError as exc:
            result = ReadinessResult(ready=False, reason="ReadError", message=str(exc))
            live = None
        else:
            result = safe_evaluate(evaluator, live)

        if live is not None and result.ready:
            _log.debug("resource_ready", resource_id=resource_id, kind=kind, name=name, polls=polls)
            return result, live
        if result.failed:
            raise ReadinessFailureError(resource_id, kind, name, result.reason, result.message)

        if last is None or (result.reason, result.message) != (last.reason, last.message):
            _log.debug(
                "resource_not_ready",
                resource_id=resource_id,
                kind=kind,
                name=name,
                reason=result.reason,
                message=result.message,
            )
            if on_status is not None:
                await on_status(result)
        last = result

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise ReadinessTimeoutError(resource_id, kind, name, timeout, last.reason, last.message)
        await asyncio.sleep(min(poll_interval, remaining))
