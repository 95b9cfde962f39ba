"""Field path helpers shared by the compiler and the live resolver."""

from __future__ import annotations

import re
from typing import Any

_INDEX = re.compile(r"\[(\d+)\]")


def normalize_field_path(path: str) -> str:
    """``status.loadBalancer.ingress[0].ip`` -> ``status.loadBalancer.ingress.0.ip``."""
    return _INDEX.sub(r".\1", path).strip(".")


def split_field_path(path: str) -> list[str]:
    normalized = normalize_field_path(path)
    return normalized.split(".") if normalized else []


def get_field(obj: Any, path: str, default: Any = None) -> Any:
    """Read *path* out of a nested dict/list tree.

    Accepts both ``items[0].name`` and ``items.0.name``.  Missing keys,
    out-of-range indices and walks through scalars all yield *default*.
    """
    current = obj
    for segment in split_field_path(path):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current
