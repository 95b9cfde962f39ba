"""Deployment and readiness result structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class DeploymentStatus(StrEnum):
    """Overall outcome of a deployment call."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class ResourcePhase(StrEnum):
    """Where a resource's deployment stopped."""

    RESOLVE = "resolve"
    APPLY = "apply"
    READINESS = "readiness"
    ROLLBACK = "rollback"


@dataclass(frozen=True)
class ReadinessResult:
    """Verdict of a readiness evaluator for one observation of live state.

    ``failed`` marks a terminal failure, distinct from "not ready yet".
    Never cached past one evaluation.
    """

    ready: bool
    reason: str | None = None
    message: str | None = None
    details: dict[str, Any] | None = None
    failed: bool = False

    @classmethod
    def immediate(cls, message: str = "Resource is ready once it exists") -> ReadinessResult:
        return cls(ready=True, reason="NoEvaluator", message=message)


@dataclass(frozen=True)
class AppliedResource:
    """A resource the orchestrator applied, with the manifest it submitted."""

    id: str
    kind: str
    name: str
    namespace: str
    manifest: dict[str, Any]
    readiness_result: ReadinessResult | None = None
    live_state: dict[str, Any] | None = None
    action: str = "created"  # created | patched | dry_run
    applied_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass(frozen=True)
class ResourceError:
    """A resource-scoped failure recorded in a DeploymentResult."""

    resource_id: str
    kind: str
    phase: ResourcePhase
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)


@dataclass(frozen=True)
class DeploymentResult:
    """Outcome of one deployment call.  Immutable once returned.

    ``applied_resources`` holds every resource whose apply went through,
    including ones that later failed readiness.  ``ready_ids`` lists the
    ones that completed successfully.  ``skipped`` holds resources that did
    not complete because a dependency failed or the deployment was cancelled
    or timed out; a resource interrupted after its apply appears in both.
    """

    deployment_id: str
    status: DeploymentStatus
    applied_resources: tuple[AppliedResource, ...] = ()
    errors: tuple[ResourceError, ...] = ()
    ready_ids: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    cancelled: bool = False
    duration_ms: float = 0.0
    rollback: RollbackResult | None = None

    def get(self, resource_id: str) -> AppliedResource | None:
        for applied in self.applied_resources:
            if applied.id == resource_id:
                return applied
        return None

    def error_for(self, resource_id: str) -> ResourceError | None:
        for err in self.errors:
            if err.resource_id == resource_id:
                return err
        return None


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of tearing resources down, leaves first."""

    status: DeploymentStatus
    deleted: tuple[str, ...] = ()
    errors: tuple[ResourceError, ...] = ()


def summarize_status(succeeded: int, failed: int) -> DeploymentStatus:
    """``succeeded`` when nothing failed, ``partial`` when something worked, else ``failed``."""
    if failed == 0:
        return DeploymentStatus.SUCCEEDED
    if succeeded > 0:
        return DeploymentStatus.PARTIAL
    return DeploymentStatus.FAILED
