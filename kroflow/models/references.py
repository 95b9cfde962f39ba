"""Typed handles to a field of another resource (or of the graph's input schema)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

SCHEMA_RESOURCE_ID = "__schema__"
SCHEMA_ALIAS = "schema"


class TypeTag(StrEnum):
    """Expected type of the value a reference points at."""

    ANY = "any"
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


@dataclass(frozen=True)
class Reference:
    """Field ``field_path`` of resource ``resource_id``.

    Two references are equal iff ``resource_id`` and ``field_path`` match;
    ``value_type`` is informational only.
    """

    resource_id: str
    field_path: str
    value_type: TypeTag = field(default=TypeTag.ANY, compare=False)

    @property
    def is_schema(self) -> bool:
        return self.resource_id == SCHEMA_RESOURCE_ID

    @property
    def target_id(self) -> str:
        """Identifier used in the target expression language."""
        return SCHEMA_ALIAS if self.is_schema else self.resource_id

    def __str__(self) -> str:
        return f"{self.target_id}.{self.field_path}"


def resource_ref(resource_id: str, field_path: str, value_type: TypeTag = TypeTag.ANY) -> Reference:
    return Reference(resource_id=resource_id, field_path=field_path, value_type=value_type)


def schema_ref(field_path: str, value_type: TypeTag = TypeTag.ANY) -> Reference:
    """Reference a field of the graph's external input, e.g. ``schema_ref("spec.name")``."""
    return Reference(resource_id=SCHEMA_RESOURCE_ID, field_path=field_path, value_type=value_type)
