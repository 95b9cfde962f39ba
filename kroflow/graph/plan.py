"""Deployment plan analysis: which resources can be applied side by side."""

from __future__ import annotations

from dataclasses import dataclass, field

from kroflow.graph.dependency_graph import DependencyGraph


@dataclass(frozen=True)
class DeploymentPlan:
    """Topological order grouped into levels.

    Every resource in ``levels[i]`` depends only on resources in earlier
    levels, so a level can be applied concurrently.
    """

    levels: tuple[tuple[str, ...], ...] = field(default_factory=tuple)
    total_resources: int = 0

    @property
    def max_parallelism(self) -> int:
        return max((len(level) for level in self.levels), default=0)

    @property
    def order(self) -> list[str]:
        return [node_id for level in self.levels for node_id in level]


def analyze_deployment_order(graph: DependencyGraph) -> DeploymentPlan:
    """Group ``graph.topological_order()`` by dependency depth.

    Raises:
        CircularDependencyError: the graph has a cycle.
    """
    depth: dict[str, int] = {}
    for node_id in graph.topological_order():
        deps = graph.dependencies_of(node_id)
        depth[node_id] = 1 + max((depth[dep] for dep in deps), default=-1)

    levels: list[list[str]] = []
    for node_id, level in depth.items():
        while len(levels) <= level:
            levels.append([])
        levels[level].append(node_id)

    return DeploymentPlan(
        levels=tuple(tuple(level) for level in levels),
        total_resources=graph.node_count,
    )


def rollback_order(graph: DependencyGraph) -> list[str]:
    """Leaves first: a resource is deleted only after everything depending on it."""
    return graph.deletion_order()
