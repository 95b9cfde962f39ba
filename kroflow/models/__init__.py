"""Core data structures for kroflow."""

from kroflow.models.config import DeploymentConfig, EventsConfig, KroflowConfig, LogConfig, RetryPolicy
from kroflow.models.deployment import (
    AppliedResource,
    DeploymentResult,
    DeploymentStatus,
    ReadinessResult,
    ResourceError,
    ResourcePhase,
    RollbackResult,
)
from kroflow.models.events import DeploymentEvent, DeploymentEventType
from kroflow.models.expressions import (
    BinaryExpr,
    CallExpr,
    ConditionalExpr,
    Expression,
    LiteralExpr,
    TemplateExpr,
    VariableExpr,
)
from kroflow.models.references import SCHEMA_RESOURCE_ID, Reference, TypeTag, resource_ref, schema_ref
from kroflow.models.resources import ReadinessEvaluator, ResourceNode, deterministic_resource_id

__all__ = [
    "AppliedResource",
    "BinaryExpr",
    "CallExpr",
    "ConditionalExpr",
    "DeploymentConfig",
    "DeploymentEvent",
    "DeploymentEventType",
    "DeploymentResult",
    "DeploymentStatus",
    "EventsConfig",
    "Expression",
    "KroflowConfig",
    "LiteralExpr",
    "LogConfig",
    "ReadinessEvaluator",
    "ReadinessResult",
    "Reference",
    "ResourceError",
    "ResourceNode",
    "ResourcePhase",
    "RetryPolicy",
    "RollbackResult",
    "SCHEMA_RESOURCE_ID",
    "TemplateExpr",
    "TypeTag",
    "VariableExpr",
    "deterministic_resource_id",
    "resource_ref",
    "schema_ref",
]
