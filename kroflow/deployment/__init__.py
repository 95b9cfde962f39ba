"""Direct deployment orchestration."""

from kroflow.deployment.apply import apply_with_retry, create_or_patch
from kroflow.deployment.orchestrator import DirectDeploymentOrchestrator
from kroflow.deployment.readiness import wait_until_ready

__all__ = [
    "DirectDeploymentOrchestrator",
    "apply_with_retry",
    "create_or_patch",
    "wait_until_ready",
]
