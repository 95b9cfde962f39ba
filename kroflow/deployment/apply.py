"""Create-or-patch with retry."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from kroflow.client import ClusterClient
from kroflow.errors import ClusterApiError, ClusterConflictError, ResourceApplyError
from kroflow.models.config import RetryPolicy

_log = structlog.get_logger(component="deployment.apply")


async def create_or_patch(client: ClusterClient, manifest: dict[str, Any]) -> tuple[dict[str, Any], str]:
    """Create *manifest*; when it already exists, patch it instead.

    Returns the object the API server returned and ``"created"`` or ``"patched"``.
    """
    try:
        return await client.create(manifest), "created"
    except ClusterConflictError:
        return await client.patch(manifest), "patched"


async def apply_with_retry(
    client: ClusterClient,
    manifest: dict[str, Any],
    *,
    resource_id: str,
    kind: str,
    name: str,
    retry: RetryPolicy,
) -> tuple[dict[str, Any], str]:
    """:func:`create_or_patch`, retrying API failures with exponential backoff.

    Raises:
        ResourceApplyError: every attempt failed, or a non-API error occurred.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await create_or_patch(client, manifest)
        except ClusterApiError as exc:
            if attempt > retry.max_retries:
                raise ResourceApplyError(resource_id, kind, name, exc, attempts=attempt) from exc
            delay = retry.delay_for(attempt)
            _log.warning(
                "apply_retry",
                resource_id=resource_id,
                kind=kind,
                name=name,
                attempt=attempt,
                delay=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)
        except Exception as exc:
            raise ResourceApplyError(resource_id, kind, name, exc, attempts=attempt) from exc
