"""kroflow: reference-aware resource graphs for Kubernetes.

Compile graphs into ResourceGraphDefinitions or deploy them directly.
"""

from kroflow.compiler import ResourceGraphDefinition, SchemaDefinition, compile_resource_graph, compile_resources
from kroflow.config import load_config
from kroflow.deployment import DirectDeploymentOrchestrator
from kroflow.graph import DependencyGraph, analyze_deployment_order, build_dependency_graph
from kroflow.models import (
    DeploymentConfig,
    DeploymentResult,
    DeploymentStatus,
    ReadinessResult,
    Reference,
    ResourceNode,
    RetryPolicy,
    resource_ref,
    schema_ref,
)
from kroflow.observability.logging import setup_logging
from kroflow.readiness import ReadinessRegistry, default_registry

__version__ = "0.1.0"

__all__ = [
    "DependencyGraph",
    "DeploymentConfig",
    "DeploymentResult",
    "DeploymentStatus",
    "DirectDeploymentOrchestrator",
    "ReadinessRegistry",
    "ReadinessResult",
    "Reference",
    "ResourceGraphDefinition",
    "ResourceNode",
    "RetryPolicy",
    "SchemaDefinition",
    "__version__",
    "analyze_deployment_order",
    "build_dependency_graph",
    "compile_resource_graph",
    "compile_resources",
    "default_registry",
    "load_config",
    "resource_ref",
    "schema_ref",
    "setup_logging",
]
