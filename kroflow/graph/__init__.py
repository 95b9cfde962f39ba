"""Dependency graph construction, ordering and planning."""

from kroflow.graph.builder import build_dependency_graph
from kroflow.graph.dependency_graph import DependencyGraph
from kroflow.graph.plan import DeploymentPlan, analyze_deployment_order, rollback_order

__all__ = [
    "DependencyGraph",
    "DeploymentPlan",
    "analyze_deployment_order",
    "build_dependency_graph",
    "rollback_order",
]
