"""ResourceGraphDefinition compiler."""

from kroflow.compiler.resource_graph import (
    DependencyRecord,
    ResourceGraphDefinition,
    SchemaDefinition,
    compile_resource_graph,
    compile_resources,
    pascal_case,
)

__all__ = [
    "DependencyRecord",
    "ResourceGraphDefinition",
    "SchemaDefinition",
    "compile_resource_graph",
    "compile_resources",
    "pascal_case",
]
