"""Directed dependency graph over resource ids.

An edge ``dependent -> dependency`` means the dependent's configuration
references a field of the dependency.  Both directions are kept so that
apply order (dependencies first) and delete order (dependents first) are
equally cheap to walk.

Adjacency sets are insertion-ordered dicts so every traversal is
reproducible regardless of string hashing.
"""

from __future__ import annotations

import copy
import dataclasses
from collections import deque
from collections.abc import Iterator

from kroflow.errors import CircularDependencyError, DuplicateNodeError, UnknownNodeError
from kroflow.models.resources import ResourceNode


class DependencyGraph:
    """Graph of declared resources.  Built fresh per compile or deploy call."""

    def __init__(self) -> None:
        self._nodes: dict[str, ResourceNode] = {}
        self._dependencies: dict[str, dict[str, None]] = {}
        self._dependents: dict[str, dict[str, None]] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, node_id: str, resource: ResourceNode) -> None:
        if node_id in self._nodes:
            raise DuplicateNodeError(node_id)
        self._nodes[node_id] = resource
        self._dependencies[node_id] = {}
        self._dependents[node_id] = {}

    def add_edge(self, dependent: str, dependency: str) -> None:
        """Record that *dependent* needs *dependency* applied first."""
        if dependent not in self._nodes:
            raise UnknownNodeError(dependent)
        if dependency not in self._nodes:
            raise UnknownNodeError(dependency, referenced_by=dependent)
        self._dependencies[dependent][dependency] = None
        self._dependents[dependency][dependent] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return sum(len(deps) for deps in self._dependencies.values())

    @property
    def node_ids(self) -> list[str]:
        """Node ids in insertion order."""
        return list(self._nodes)

    def node(self, node_id: str) -> ResourceNode:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise UnknownNodeError(node_id) from None

    def nodes(self) -> dict[str, ResourceNode]:
        return dict(self._nodes)

    def dependencies_of(self, node_id: str) -> list[str]:
        return list(self._dependencies.get(node_id, ()))

    def dependents_of(self, node_id: str) -> list[str]:
        return list(self._dependents.get(node_id, ()))

    def edges(self) -> list[tuple[str, str]]:
        """All ``(dependent, dependency)`` pairs."""
        return [(node_id, dep) for node_id, deps in self._dependencies.items() for dep in deps]

    def root_nodes(self) -> list[str]:
        """Nodes with no dependencies; safe to apply first."""
        return [node_id for node_id, deps in self._dependencies.items() if not deps]

    def leaf_nodes(self) -> list[str]:
        """Nodes nothing depends on; safe to delete first."""
        return [node_id for node_id, dependents in self._dependents.items() if not dependents]

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def topological_order(self) -> list[str]:
        """Dependencies-first order using Kahn's algorithm.

        Ties between simultaneously ready nodes keep insertion order.

        Raises:
            CircularDependencyError: carrying one concrete offending cycle.
        """
        order = self._kahn(self._dependencies, self._dependents)
        if len(order) < len(self._nodes):
            emitted = set(order)
            blocked = [node_id for node_id in self._nodes if node_id not in emitted]
            cycles = self._find_cycles(blocked)
            raise CircularDependencyError(cycles[0] if cycles else blocked)
        return order

    def deletion_order(self) -> list[str]:
        """Dependents-first order: every node appears after all nodes that depend on it."""
        order = self._kahn(self._dependents, self._dependencies)
        if len(order) < len(self._nodes):
            # Same cycle either way; report it in dependency direction.
            self.topological_order()
        return order

    def has_cycles(self) -> bool:
        try:
            self.topological_order()
        except CircularDependencyError:
            return True
        return False

    def find_cycles(self) -> list[list[str]]:
        """Every cycle met by a DFS from each unvisited node.

        Each cycle is a closed walk along dependency edges with the first id
        repeated at the end.
        """
        return self._find_cycles(list(self._nodes))

    def _kahn(
        self,
        incoming: dict[str, dict[str, None]],
        outgoing: dict[str, dict[str, None]],
    ) -> list[str]:
        in_degree = {node_id: len(incoming[node_id]) for node_id in self._nodes}
        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        order: list[str] = []
        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for next_id in outgoing[node_id]:
                in_degree[next_id] -= 1
                if in_degree[next_id] == 0:
                    queue.append(next_id)
        return order

    def _find_cycles(self, start_ids: list[str]) -> list[list[str]]:
        visited: set[str] = set()
        on_stack: set[str] = set()
        path: list[str] = []
        cycles: list[list[str]] = []

        def enter(node_id: str) -> Iterator[str]:
            visited.add(node_id)
            on_stack.add(node_id)
            path.append(node_id)
            return iter(self._dependencies[node_id])

        # Iterative; chains can be longer than the recursion limit.
        for root in start_ids:
            if root in visited:
                continue
            stack = [enter(root)]
            while stack:
                dependency = next(stack[-1], None)
                if dependency is None:
                    stack.pop()
                    on_stack.discard(path.pop())
                elif dependency in on_stack:
                    start = path.index(dependency)
                    cycles.append([*path[start:], dependency])
                elif dependency not in visited:
                    stack.append(enter(dependency))
        return cycles

    # ------------------------------------------------------------------
    # Derived graphs
    # ------------------------------------------------------------------

    def subgraph(self, node_ids: list[str]) -> DependencyGraph:
        """New graph with only *node_ids* and the edges between them.

        Unknown ids are ignored.
        """
        wanted = {node_id for node_id in node_ids if node_id in self._nodes}
        sub = DependencyGraph()
        for node_id in self._nodes:
            if node_id in wanted:
                sub.add_node(node_id, self._nodes[node_id])
        for node_id in sub.node_ids:
            for dependency in self._dependencies[node_id]:
                if dependency in wanted:
                    sub.add_edge(node_id, dependency)
        return sub

    def clone(self) -> DependencyGraph:
        """Deep, independent copy of nodes and edges."""
        cloned = DependencyGraph()
        for node_id, node in self._nodes.items():
            cloned.add_node(node_id, dataclasses.replace(node, config=copy.deepcopy(node.config)))
        for dependent, dependency in self.edges():
            cloned.add_edge(dependent, dependency)
        return cloned
