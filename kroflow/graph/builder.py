"""Build a DependencyGraph from declared resources by scanning their references."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from kroflow.errors import UnknownNodeError
from kroflow.graph.dependency_graph import DependencyGraph
from kroflow.models.expressions import iter_references
from kroflow.models.resources import ResourceNode

_log = structlog.get_logger(component="graph.builder")


def build_dependency_graph(resources: Iterable[ResourceNode]) -> DependencyGraph:
    """Add every resource as a node, then one edge per referenced resource.

    References into the input schema create no edge.  A self reference is
    kept as an edge so the cycle check reports it.

    Raises:
        DuplicateNodeError: two resources share an id.
        UnknownNodeError: a reference targets a resource that was not declared.
    """
    graph = DependencyGraph()
    nodes = list(resources)
    for node in nodes:
        graph.add_node(node.id, node)

    for node in nodes:
        for ref in iter_references(node.config):
            if ref.is_schema:
                continue
            if ref.resource_id not in graph:
                raise UnknownNodeError(ref.resource_id, referenced_by=node.id)
            graph.add_edge(node.id, ref.resource_id)

    _log.debug("dependency_graph_built", nodes=graph.node_count, edges=graph.edge_count)
    return graph
