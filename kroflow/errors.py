"""Error taxonomy for kroflow.

Construction-time errors (graph misuse, cycles, unsupported expressions) abort
the whole compile or deploy call.  Deployment-time errors are scoped to a
single resource and are recorded in the DeploymentResult instead of raised.
"""

from __future__ import annotations

from typing import Any


class KroflowError(Exception):
    """Base class for every error raised by kroflow."""

    code = "KROFLOW_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


class DuplicateNodeError(KroflowError):
    """A node with the same id is already present in the graph."""

    code = "DUPLICATE_NODE"

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node '{node_id}' already exists in dependency graph", {"node_id": node_id})
        self.node_id = node_id


class UnknownNodeError(KroflowError):
    """An edge endpoint or a reference target is not a node of the graph."""

    code = "UNKNOWN_NODE"

    def __init__(self, node_id: str, referenced_by: str | None = None) -> None:
        if referenced_by:
            message = f"Resource '{referenced_by}' references unknown resource '{node_id}'"
        else:
            message = f"Node '{node_id}' not found in dependency graph"
        super().__init__(message, {"node_id": node_id, "referenced_by": referenced_by})
        self.node_id = node_id
        self.referenced_by = referenced_by


class CircularDependencyError(KroflowError):
    """The dependency relation contains a cycle.

    ``cycle`` is a closed walk: its first id is repeated at the end.
    """

    code = "CIRCULAR_DEPENDENCY"

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Circular dependency detected: {' -> '.join(cycle)}", {"cycle": list(cycle)})
        self.cycle = list(cycle)


class ResourceIdError(KroflowError):
    """A deterministic id cannot be derived for a resource."""

    code = "RESOURCE_ID"


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------


class UnsupportedExpressionError(KroflowError):
    """The analyzer met a construct it cannot render."""

    code = "UNSUPPORTED_EXPRESSION"

    def __init__(self, construct: str, field_path: str = "") -> None:
        where = f" at field '{field_path}'" if field_path else ""
        super().__init__(f"Unsupported expression{where}: {construct}", {"construct": construct, "field": field_path})
        self.construct = construct
        self.field_path = field_path

    def at(self, field_path: str) -> UnsupportedExpressionError:
        """Return a copy of this error located at *field_path*."""
        if self.field_path:
            return self
        return UnsupportedExpressionError(self.construct, field_path)


class ExpressionEvaluationError(KroflowError):
    """A computed expression could not be evaluated against live values."""

    code = "EXPRESSION_EVALUATION"


class UnresolvedReferenceError(KroflowError):
    """A reference targets a resource that has not been applied yet.

    Topological ordering guarantees this never happens; seeing it means the
    orchestrator's invariants were broken.
    """

    code = "UNRESOLVED_REFERENCE"

    def __init__(self, resource_id: str, field_path: str, referenced_by: str) -> None:
        super().__init__(
            f"Resource '{referenced_by}' references '{resource_id}.{field_path}' before it was applied",
            {"resource_id": resource_id, "field_path": field_path, "referenced_by": referenced_by},
        )
        self.resource_id = resource_id
        self.field_path = field_path
        self.referenced_by = referenced_by


# ---------------------------------------------------------------------------
# Deployment (resource scoped)
# ---------------------------------------------------------------------------


class ResourceDeploymentError(KroflowError):
    """Base for errors that are scoped to one resource of a deployment."""

    code = "RESOURCE_DEPLOYMENT"

    def __init__(self, resource_id: str, kind: str, name: str, reason: str, message: str) -> None:
        super().__init__(
            f"{kind}/{name} ({resource_id}): {reason}: {message}",
            {"resource_id": resource_id, "kind": kind, "name": name, "reason": reason},
        )
        self.resource_id = resource_id
        self.kind = kind
        self.name = name
        self.reason = reason


class ResourceApplyError(ResourceDeploymentError):
    """Create/patch of a resource failed after all retries."""

    code = "RESOURCE_APPLY_FAILED"

    def __init__(self, resource_id: str, kind: str, name: str, cause: Exception, attempts: int = 1) -> None:
        super().__init__(resource_id, kind, name, "ApplyFailed", f"{cause} (after {attempts} attempt(s))")
        self.cause = cause
        self.attempts = attempts


class ReadinessTimeoutError(ResourceDeploymentError):
    """A resource did not become ready within its wait budget."""

    code = "READINESS_TIMEOUT"

    def __init__(
        self,
        resource_id: str,
        kind: str,
        name: str,
        timeout_seconds: float,
        last_reason: str | None = None,
        last_message: str | None = None,
    ) -> None:
        detail = f"not ready after {timeout_seconds:g}s"
        if last_reason or last_message:
            last = last_reason or "NotReady"
            if last_message:
                last = f"{last}: {last_message}"
            detail = f"{detail} (last status: {last})"
        super().__init__(resource_id, kind, name, "ReadinessTimeout", detail)
        self.timeout_seconds = timeout_seconds
        self.last_reason = last_reason
        self.last_message = last_message


class ReadinessFailureError(ResourceDeploymentError):
    """The readiness evaluator reported an explicit, terminal failure."""

    code = "READINESS_FAILED"

    def __init__(self, resource_id: str, kind: str, name: str, reason: str | None, message: str | None) -> None:
        super().__init__(resource_id, kind, name, reason or "ReadinessFailed", message or "resource reported failure")


# ---------------------------------------------------------------------------
# Cluster API outcomes
# ---------------------------------------------------------------------------


class ClusterApiError(KroflowError):
    """Any cluster API failure that is neither not-found nor conflict."""

    code = "CLUSTER_API"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message, {"status": status})
        self.status = status


class ClusterNotFoundError(ClusterApiError):
    """The addressed object does not exist (HTTP 404)."""

    code = "CLUSTER_NOT_FOUND"

    def __init__(self, message: str = "not found") -> None:
        super().__init__(message, status=404)


class ClusterConflictError(ClusterApiError):
    """The object already exists or was modified concurrently (HTTP 409)."""

    code = "CLUSTER_CONFLICT"

    def __init__(self, message: str = "already exists") -> None:
        super().__init__(message, status=409)
