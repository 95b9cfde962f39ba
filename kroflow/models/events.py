"""Deployment progress events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class DeploymentEventType(StrEnum):
    """Kinds of events emitted while a deployment runs."""

    STARTED = "started"
    PROGRESS = "progress"
    RESOURCE_APPLIED = "resource_applied"
    RESOURCE_STATUS = "resource_status"
    RESOURCE_READY = "resource_ready"
    RESOURCE_FAILED = "resource_failed"
    RESOURCE_SKIPPED = "resource_skipped"
    ROLLBACK = "rollback"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class DeploymentEvent:
    """One progress notification.  Immutable once emitted."""

    type: DeploymentEventType
    message: str
    deployment_id: str = ""
    resource_id: str | None = None
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
