"""Built-in readiness evaluators for common resource kinds.

Every evaluator is a pure function of the live object.  Missing status is a
normal "not ready" outcome, never an exception.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from kroflow.expressions.paths import get_field
from kroflow.models.deployment import ReadinessResult
from kroflow.models.resources import ReadinessEvaluator
from kroflow.readiness.registry import ReadinessRegistry

# Condition reasons that mean the controller gave up rather than "still working".
_TERMINAL_REASONS = frozenset(
    {"InstallFailed", "UpgradeFailed", "ReconciliationFailed", "ArtifactFailed", "BuildFailed", "Failed"},
)


def _status(live: dict[str, Any]) -> dict[str, Any] | None:
    status = live.get("status") if isinstance(live, dict) else None
    return status if isinstance(status, dict) and status else None


def _missing_status(kind: str, **details: Any) -> ReadinessResult:
    return ReadinessResult(
        ready=False,
        reason="StatusMissing",
        message=f"{kind} status not available yet",
        details=details or None,
    )


def _count(status: dict[str, Any], key: str) -> int:
    value = status.get(key)
    return value if isinstance(value, int) else 0


def _conditions(live: dict[str, Any]) -> list[dict[str, Any]]:
    conditions = get_field(live, "status.conditions")
    if not isinstance(conditions, list):
        return []
    return [c for c in conditions if isinstance(c, dict)]


def _find_condition(live: dict[str, Any], condition_type: str) -> dict[str, Any] | None:
    for condition in _conditions(live):
        if condition.get("type") == condition_type:
            return condition
    return None


def _expected_replicas(live: dict[str, Any], expected: int | None) -> int:
    if expected is not None:
        return expected
    replicas = get_field(live, "spec.replicas")
    return replicas if isinstance(replicas, int) else 1


# ---------------------------------------------------------------------------
# Replica counting
# ---------------------------------------------------------------------------


def deployment_evaluator(expected_replicas: int | None = None) -> ReadinessEvaluator:
    """Ready when ready and available replicas both reach the target.

    With ``expected_replicas=None`` the target is read from ``spec.replicas``.
    """

    def evaluate(live: dict[str, Any]) -> ReadinessResult:
        expected = _expected_replicas(live, expected_replicas)
        status = _status(live)
        if status is None:
            return _missing_status("Deployment", expectedReplicas=expected)
        ready_replicas = _count(status, "readyReplicas")
        available = _count(status, "availableReplicas")
        if ready_replicas >= expected and available >= expected:
            return ReadinessResult(
                ready=True,
                message=(
                    f"Deployment has {ready_replicas}/{expected} ready and {available}/{expected} available replicas"
                ),
            )
        return ReadinessResult(
            ready=False,
            reason="ReplicasNotReady",
            message=f"Waiting for replicas: {ready_replicas}/{expected} ready, {available}/{expected} available",
            details={
                "expectedReplicas": expected,
                "readyReplicas": ready_replicas,
                "availableReplicas": available,
                "updatedReplicas": _count(status, "updatedReplicas"),
            },
        )

    return evaluate


def stateful_set_evaluator(expected_replicas: int | None = None) -> ReadinessEvaluator:
    """Ready when ready, current and updated replicas all reach the target."""

    def evaluate(live: dict[str, Any]) -> ReadinessResult:
        expected = _expected_replicas(live, expected_replicas)
        status = _status(live)
        if status is None:
            return _missing_status("StatefulSet", expectedReplicas=expected)
        ready_replicas = _count(status, "readyReplicas")
        current = _count(status, "currentReplicas")
        updated = _count(status, "updatedReplicas")
        if ready_replicas >= expected and current >= expected and updated >= expected:
            return ReadinessResult(ready=True, message=f"StatefulSet has {ready_replicas}/{expected} ready replicas")
        return ReadinessResult(
            ready=False,
            reason="ReplicasNotReady",
            message=(
                f"Waiting for StatefulSet replicas: {ready_replicas}/{expected} ready, {updated}/{expected} updated"
            ),
            details={
                "expectedReplicas": expected,
                "readyReplicas": ready_replicas,
                "currentReplicas": current,
                "updatedReplicas": updated,
            },
        )

    return evaluate


def replica_set_evaluator(live: dict[str, Any]) -> ReadinessResult:
    expected = _expected_replicas(live, None)
    status = _status(live)
    if status is None:
        return _missing_status("ReplicaSet", expectedReplicas=expected)
    ready_replicas = _count(status, "readyReplicas")
    if ready_replicas >= expected:
        return ReadinessResult(ready=True, message=f"ReplicaSet has {ready_replicas}/{expected} ready replicas")
    return ReadinessResult(
        ready=False,
        reason="ReplicasNotReady",
        message=f"Waiting for ReplicaSet replicas: {ready_replicas}/{expected} ready",
    )


def daemon_set_evaluator(live: dict[str, Any]) -> ReadinessResult:
    status = _status(live)
    if status is None:
        return _missing_status("DaemonSet")
    desired = _count(status, "desiredNumberScheduled")
    ready_count = _count(status, "numberReady")
    if desired > 0 and ready_count >= desired:
        return ReadinessResult(ready=True, message=f"DaemonSet has {ready_count}/{desired} pods ready")
    return ReadinessResult(
        ready=False,
        reason="PodsNotReady",
        message=f"Waiting for DaemonSet pods: {ready_count}/{desired} ready",
        details={"desiredNumberScheduled": desired, "numberReady": ready_count},
    )


# ---------------------------------------------------------------------------
# Jobs and pods
# ---------------------------------------------------------------------------


def job_evaluator(live: dict[str, Any]) -> ReadinessResult:
    """Ready on completion; failure past ``backoffLimit`` or a Failed condition is terminal."""
    status = _status(live)
    completions = get_field(live, "spec.completions")
    expected = completions if isinstance(completions, int) else 1
    if status is None:
        return _missing_status("Job", expectedCompletions=expected)

    failed_condition = _find_condition(live, "Failed")
    if failed_condition and failed_condition.get("status") == "True":
        return ReadinessResult(
            ready=False,
            failed=True,
            reason=failed_condition.get("reason") or "JobFailed",
            message=failed_condition.get("message") or "Job reported a Failed condition",
        )

    succeeded = _count(status, "succeeded")
    failed = _count(status, "failed")
    backoff_limit = get_field(live, "spec.backoffLimit")
    if isinstance(backoff_limit, int) and failed > backoff_limit:
        return ReadinessResult(
            ready=False,
            failed=True,
            reason="JobFailed",
            message=f"Job failed: {failed} failed pods exceed backoff limit of {backoff_limit}",
            details={"succeeded": succeeded, "failed": failed, "backoffLimit": backoff_limit},
        )

    if succeeded >= expected:
        return ReadinessResult(ready=True, message=f"Job completed: {succeeded}/{expected} succeeded")
    return ReadinessResult(
        ready=False,
        reason="JobRunning",
        message=f"Job in progress: {succeeded}/{expected} succeeded, {_count(status, 'active')} active",
        details={"succeeded": succeeded, "failed": failed, "active": _count(status, "active")},
    )


def pod_evaluator(live: dict[str, Any]) -> ReadinessResult:
    status = _status(live)
    if status is None:
        return _missing_status("Pod")
    phase = status.get("phase")
    if phase == "Failed":
        return ReadinessResult(
            ready=False,
            failed=True,
            reason=status.get("reason") or "PodFailed",
            message=status.get("message") or "Pod terminated in Failed phase",
        )
    if phase != "Running":
        return ReadinessResult(
            ready=False, reason="PodNotRunning", message=f"Pod is in {phase} phase, expected Running"
        )

    containers = [c for c in status.get("containerStatuses") or [] if isinstance(c, dict)]
    if not containers:
        return ReadinessResult(ready=False, reason="ContainersPending", message="No container statuses available")
    ready_count = sum(1 for c in containers if c.get("ready"))
    if ready_count == len(containers):
        return ReadinessResult(ready=True, message=f"All {ready_count} containers are ready")
    return ReadinessResult(
        ready=False,
        reason="ContainersNotReady",
        message=f"{ready_count}/{len(containers)} containers ready",
    )


# ---------------------------------------------------------------------------
# Networking and storage
# ---------------------------------------------------------------------------


def service_evaluator(live: dict[str, Any]) -> ReadinessResult:
    service_type = get_field(live, "spec.type") or "ClusterIP"
    if service_type == "LoadBalancer":
        ingress = get_field(live, "status.loadBalancer.ingress")
        first = ingress[0] if isinstance(ingress, list) and ingress and isinstance(ingress[0], dict) else {}
        endpoint = first.get("ip") or first.get("hostname")
        if endpoint:
            return ReadinessResult(ready=True, message=f"LoadBalancer service has external endpoint: {endpoint}")
        return ReadinessResult(
            ready=False,
            reason="LoadBalancerPending",
            message="Waiting for LoadBalancer to assign external IP or hostname",
            details={"serviceType": service_type},
        )
    if service_type == "ExternalName":
        external_name = get_field(live, "spec.externalName")
        if external_name:
            return ReadinessResult(ready=True, message=f"ExternalName service configured with: {external_name}")
        return ReadinessResult(
            ready=False,
            reason="ExternalNameMissing",
            message="ExternalName service missing externalName field",
        )
    return ReadinessResult(ready=True, message=f"{service_type} service is ready")


def ingress_evaluator(live: dict[str, Any]) -> ReadinessResult:
    ingress = get_field(live, "status.loadBalancer.ingress")
    if isinstance(ingress, list) and ingress:
        return ReadinessResult(ready=True, message="Ingress has a load balancer address")
    return ReadinessResult(ready=False, reason="IngressPending", message="Waiting for Ingress load balancer address")


def pvc_evaluator(live: dict[str, Any]) -> ReadinessResult:
    status = _status(live)
    if status is None:
        return _missing_status("PersistentVolumeClaim")
    phase = status.get("phase")
    if phase == "Bound":
        return ReadinessResult(ready=True, message="PersistentVolumeClaim is bound")
    if phase == "Lost":
        return ReadinessResult(
            ready=False,
            failed=True,
            reason="ClaimLost",
            message="PersistentVolumeClaim lost its underlying volume",
        )
    return ReadinessResult(ready=False, reason="ClaimPending", message=f"PersistentVolumeClaim is {phase or 'Pending'}")


def namespace_evaluator(live: dict[str, Any]) -> ReadinessResult:
    phase = get_field(live, "status.phase")
    if phase == "Active":
        return ReadinessResult(ready=True, message="Namespace is active")
    if phase is None:
        return _missing_status("Namespace")
    return ReadinessResult(ready=False, reason="NamespaceNotActive", message=f"Namespace is {phase}")


def hpa_evaluator(live: dict[str, Any]) -> ReadinessResult:
    able = _find_condition(live, "AbleToScale")
    if able is None:
        if _status(live) is None:
            return _missing_status("HorizontalPodAutoscaler")
        # autoscaling/v1 reports no conditions
        return ReadinessResult(ready=True, message="HorizontalPodAutoscaler is active")
    if able.get("status") == "True":
        return ReadinessResult(ready=True, message="HorizontalPodAutoscaler is able to scale")
    return ReadinessResult(
        ready=False,
        reason=able.get("reason") or "NotAbleToScale",
        message=able.get("message") or "HorizontalPodAutoscaler cannot scale yet",
    )


def immediate_evaluator(live: dict[str, Any]) -> ReadinessResult:
    return ReadinessResult(ready=True, message=f"{live.get('kind', 'Resource')} is ready once it exists")


# ---------------------------------------------------------------------------
# Condition scanning
# ---------------------------------------------------------------------------


def condition_evaluator(condition_type: str = "Ready", expected_status: str = "True") -> ReadinessEvaluator:
    """Ready iff ``condition_type`` has ``expected_status``.

    While the condition is absent or not yet satisfied, a true ``Stalled``
    condition or a terminal failure reason turns the result into a failure;
    anything else is "in progress".
    """

    def evaluate(live: dict[str, Any]) -> ReadinessResult:
        condition = _find_condition(live, condition_type)
        if condition is not None and condition.get("status") == expected_status:
            return ReadinessResult(ready=True, message=condition.get("message") or f"{condition_type} condition met")

        stalled = _find_condition(live, "Stalled")
        if stalled is not None and stalled.get("status") == "True":
            return ReadinessResult(
                ready=False,
                failed=True,
                reason=stalled.get("reason") or "Stalled",
                message=stalled.get("message") or "Resource reconciliation stalled",
            )

        if condition is None:
            return ReadinessResult(
                ready=False,
                reason="Progressing",
                message=f"Waiting for {condition_type} condition",
            )

        reason = condition.get("reason") or "NotReady"
        if condition.get("status") == "False" and reason in _TERMINAL_REASONS:
            return ReadinessResult(
                ready=False,
                failed=True,
                reason=reason,
                message=condition.get("message") or f"{condition_type} condition reports {reason}",
            )
        return ReadinessResult(
            ready=False,
            reason=reason,
            message=condition.get("message") or f"{condition_type} condition is {condition.get('status')}",
        )

    return evaluate


def safe_evaluate(evaluator: Callable[[dict[str, Any]], ReadinessResult], live: dict[str, Any]) -> ReadinessResult:
    """Run a user-supplied evaluator, turning an exception into a not-ready verdict."""
    try:
        return evaluator(live)
    except Exception as exc:  # noqa: BLE001
        return ReadinessResult(ready=False, reason="EvaluatorError", message=f"Error checking readiness: {exc}")


BUILTIN_EVALUATORS: dict[str, ReadinessEvaluator] = {
    "Namespace": namespace_evaluator,
    "Deployment": deployment_evaluator(),
    "StatefulSet": stateful_set_evaluator(),
    "ReplicaSet": replica_set_evaluator,
    "DaemonSet": daemon_set_evaluator,
    "Job": job_evaluator,
    "Pod": pod_evaluator,
    "Service": service_evaluator,
    "Ingress": ingress_evaluator,
    "PersistentVolumeClaim": pvc_evaluator,
    "HorizontalPodAutoscaler": hpa_evaluator,
    "ConfigMap": immediate_evaluator,
    "Secret": immediate_evaluator,
    "ServiceAccount": immediate_evaluator,
    "HelmRelease": condition_evaluator("Ready"),
    "HelmRepository": condition_evaluator("Ready"),
    "Kustomization": condition_evaluator("Ready"),
}


def default_registry() -> ReadinessRegistry:
    """A new registry populated with the built-in evaluators."""
    registry = ReadinessRegistry()
    for kind, evaluator in BUILTIN_EVALUATORS.items():
        registry.register_for_kind(kind, evaluator)
    return registry
