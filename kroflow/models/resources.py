"""Declared resources and their stable identifiers."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from kroflow.errors import ResourceIdError
from kroflow.models.expressions import is_dynamic
from kroflow.models.references import Reference, TypeTag

if TYPE_CHECKING:
    from kroflow.models.deployment import ReadinessResult

ReadinessEvaluator = Callable[[dict[str, Any]], "ReadinessResult"]

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")
_WORD_SPLIT = re.compile(r"[-_.]")


def to_camel_case(value: str) -> str:
    """``"deployment-web-api"`` -> ``"deploymentWebApi"``."""
    words = [w for w in _WORD_SPLIT.split(value) if w]
    if not words:
        return ""
    first = words[0][0].lower() + words[0][1:]
    return first + "".join(w[0].upper() + w[1:].lower() for w in words[1:])


def deterministic_resource_id(kind: str, name: object, namespace: str | None = None) -> str:
    """Derive a stable id from kind, name and namespace.

    Same inputs always yield the same id so compiled artifacts diff cleanly.
    The default namespace is omitted; a name that already mentions the kind
    is not prefixed again.

    Raises:
        ResourceIdError: the name is an expression or a ``${...}`` template.
    """
    if is_dynamic(name):
        raise ResourceIdError(
            f"Cannot derive a deterministic id for {kind} whose name is an expression; pass an explicit id",
            {"kind": kind},
        )
    if not isinstance(name, str) or not name:
        raise ResourceIdError(f"Cannot derive a deterministic id for {kind} without metadata.name", {"kind": kind})
    if "${" in name or "{{" in name:
        raise ResourceIdError(
            f"Cannot derive a deterministic id for {kind} with template name {name!r}; pass an explicit id",
            {"kind": kind, "name": name},
        )

    clean_kind = _NON_ALNUM.sub("", kind).lower()
    parts: list[str] = []
    if clean_kind not in name.lower():
        parts.append(clean_kind)
    if namespace and not is_dynamic(namespace) and namespace != "default":
        parts.append(namespace)
    parts.append(name)
    return to_camel_case("-".join(parts))


@dataclass
class ResourceNode:
    """One declared resource.

    ``config`` is the full manifest tree; any leaf may be an expression node
    instead of a literal.  Owned by the graph that holds it.
    """

    id: str
    kind: str
    config: dict[str, Any]
    readiness_evaluator: ReadinessEvaluator | None = field(default=None, compare=False)

    @classmethod
    def from_manifest(
        cls,
        manifest: dict[str, Any],
        id: str | None = None,  # noqa: A002
        readiness_evaluator: ReadinessEvaluator | None = None,
    ) -> ResourceNode:
        """Build a node from a manifest, deriving the id when none is given."""
        kind = str(manifest.get("kind", ""))
        if not kind:
            raise ResourceIdError("Manifest has no kind", {"manifest_keys": sorted(manifest)})
        metadata = manifest.get("metadata") or {}
        node_id = id or deterministic_resource_id(kind, metadata.get("name"), metadata.get("namespace"))
        return cls(id=node_id, kind=kind, config=manifest, readiness_evaluator=readiness_evaluator)

    @property
    def api_version(self) -> str:
        return str(self.config.get("apiVersion", "v1"))

    @property
    def metadata(self) -> dict[str, Any]:
        return self.config.get("metadata") or {}

    @property
    def name(self) -> str:
        """Literal metadata.name, or ``"<expr>"`` when the name is computed."""
        value = self.metadata.get("name", "")
        return "<expr>" if is_dynamic(value) else str(value)

    def ref(self, field_path: str, value_type: TypeTag = TypeTag.ANY) -> Reference:
        """Reference a field of this resource, e.g. ``db.ref("status.readyReplicas")``."""
        return Reference(resource_id=self.id, field_path=field_path, value_type=value_type)
