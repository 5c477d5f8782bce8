"""Path accessors for loosely-typed cluster documents.

Cluster objects come back from the control plane as nested dicts parsed from
JSON. These helpers read a field path and return None when any segment is
missing or has the wrong type, so callers never need try/except around a
field lookup. Keep this looseness at the control-plane boundary.
"""

from typing import Any


def nested_get(obj: Any, *path: str) -> Any | None:
    """Return the value at a field path, or None if it is absent.

    Example:
        >>> nested_get({"status": {"phase": "Running"}}, "status", "phase")
        'Running'
        >>> nested_get({"status": None}, "status", "phase") is None
        True
    """
    current = obj
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def nested_str(obj: Any, *path: str) -> str | None:
    """Return a string field, or None if absent or not a string."""
    value = nested_get(obj, *path)
    return value if isinstance(value, str) else None


def nested_bool(obj: Any, *path: str) -> bool | None:
    """Return a boolean field, or None if absent or not a boolean."""
    value = nested_get(obj, *path)
    return value if isinstance(value, bool) else None


def nested_list(obj: Any, *path: str) -> list[Any] | None:
    """Return a list field, or None if absent or not a list."""
    value = nested_get(obj, *path)
    return value if isinstance(value, list) else None


def nested_map(obj: Any, *path: str) -> dict[str, Any] | None:
    """Return a mapping field, or None if absent or not a mapping."""
    value = nested_get(obj, *path)
    return value if isinstance(value, dict) else None


__all__ = ["nested_bool", "nested_get", "nested_list", "nested_map", "nested_str"]
