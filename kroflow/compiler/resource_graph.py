"""Compile a dependency graph into a ResourceGraphDefinition document.

The document is a handoff to an external controller that resolves the
``${...}`` expressions continuously; nothing is resolved here.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog
import yaml

from kroflow.errors import UnknownNodeError
from kroflow.expressions.analyzer import analyze
from kroflow.graph.builder import build_dependency_graph
from kroflow.graph.dependency_graph import DependencyGraph
from kroflow.models.references import Reference
from kroflow.models.resources import ResourceNode

_log = structlog.get_logger(component="compiler.resource_graph")

RGD_API_VERSION = "kro.run/v1alpha1"
RGD_KIND = "ResourceGraphDefinition"

_WORD = re.compile(r"[^a-zA-Z0-9]+")


def pascal_case(value: str) -> str:
    """``"my-web-app"`` -> ``"MyWebApp"``."""
    return "".join(word[0].upper() + word[1:] for word in _WORD.split(value) if word)


@dataclass
class SchemaDefinition:
    """Input/output fields of the generated custom resource.

    ``spec_fields`` map field names to type strings such as
    ``'string | default="web"'``.  ``status_fields`` may hold expression
    nodes; they are compiled like resource fields.
    """

    kind: str
    api_version: str = "v1alpha1"
    spec_fields: dict[str, Any] = field(default_factory=dict)
    status_fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def default_for(cls, name: str) -> SchemaDefinition:
        return cls(kind=pascal_case(name), spec_fields={"name": f'string | default="{name}"'})


@dataclass(frozen=True)
class DependencyRecord:
    """Resource ``source`` reads ``field`` of resource ``target``."""

    source: str
    target: str
    field: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.source, "to": self.target, "field": self.field}


@dataclass
class CompiledResource:
    id: str
    template: dict[str, Any]


@dataclass
class ResourceGraphDefinition:
    """Compiled artifact: schema section plus reference-rewritten resources."""

    name: str
    namespace: str
    schema: dict[str, Any]
    resources: list[CompiledResource] = field(default_factory=list)
    dependencies: list[DependencyRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": RGD_API_VERSION,
            "kind": RGD_KIND,
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": {
                "schema": self.schema,
                "resources": [{"id": r.id, "template": r.template} for r in self.resources],
            },
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(
            self.to_dict(),
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
            width=10_000,
        )


def _check_targets(refs: Iterable[Reference], graph: DependencyGraph, referenced_by: str) -> None:
    for ref in refs:
        if not ref.is_schema and ref.resource_id not in graph:
            raise UnknownNodeError(ref.resource_id, referenced_by=referenced_by)


def _compile_schema(schema: SchemaDefinition, graph: DependencyGraph) -> dict[str, Any]:
    status: dict[str, Any] = {}
    if schema.status_fields:
        result = analyze(schema.status_fields, "status")
        _check_targets(result.dependencies, graph, "schema")
        status = result.value
    return {
        "apiVersion": schema.api_version,
        "kind": schema.kind,
        "spec": dict(schema.spec_fields),
        "status": status,
    }


def compile_resource_graph(
    name: str,
    graph: DependencyGraph,
    schema: SchemaDefinition | None = None,
    namespace: str | None = None,
) -> ResourceGraphDefinition:
    """Rewrite every reference in *graph* as a target expression.

    Resources are emitted in topological order so the output is stable
    across runs.

    Raises:
        CircularDependencyError: the graph has a cycle.
        UnknownNodeError: a reference targets a resource missing from the graph.
        UnsupportedExpressionError: a field holds a construct that cannot be rendered.
    """
    order = graph.topological_order()
    resources: list[CompiledResource] = []
    dependencies: list[DependencyRecord] = []

    for node_id in order:
        node = graph.node(node_id)
        result = analyze(node.config)
        _check_targets(result.dependencies, graph, node_id)
        resources.append(CompiledResource(id=node_id, template=result.value))
        for ref in result.dependencies:
            dependencies.append(DependencyRecord(source=node_id, target=ref.target_id, field=ref.field_path))

    rgd = ResourceGraphDefinition(
        name=name,
        namespace=namespace or "default",
        schema=_compile_schema(schema or SchemaDefinition.default_for(name), graph),
        resources=resources,
        dependencies=dependencies,
    )
    _log.info(
        "resource_graph_compiled",
        name=name,
        resources=len(resources),
        dependencies=len(dependencies),
    )
    return rgd


def compile_resources(
    name: str,
    resources: Iterable[ResourceNode],
    schema: SchemaDefinition | None = None,
    namespace: str | None = None,
) -> ResourceGraphDefinition:
    """Build the dependency graph for *resources* and compile it."""
    return compile_resource_graph(name, build_dependency_graph(resources), schema=schema, namespace=namespace)
