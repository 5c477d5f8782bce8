"""Kubernetes-safe naming helpers.

Object names must be DNS labels: lowercase alphanumerics and hyphens, at most
63 characters, no leading or trailing hyphen. Both sanitizers are total: any
input produces a valid, non-empty result.
"""

import re

MAX_NAME_LENGTH = 63
DEFAULT_NAME = "vm"
DEFAULT_LABEL_VALUE = "unknown"

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUNS = re.compile(r"-+")
_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9\-_.]+")
_DNS_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")


def sanitize_name(name: str) -> str:
    """Turn arbitrary input into a DNS-label-safe object name.

    Examples:
        >>> sanitize_name("My_VM!!")
        'my-vm'
        >>> sanitize_name("")
        'vm'
    """
    sanitized = _INVALID_NAME_CHARS.sub("-", (name or "").lower())
    sanitized = _HYPHEN_RUNS.sub("-", sanitized).strip("-")

    if len(sanitized) > MAX_NAME_LENGTH:
        sanitized = sanitized[:MAX_NAME_LENGTH].rstrip("-")

    return sanitized or DEFAULT_NAME


def sanitize_label_value(value: str) -> str:
    """Turn arbitrary input into a valid label value."""
    sanitized = _INVALID_LABEL_CHARS.sub("-", value or "").strip("-_.")

    if len(sanitized) > MAX_NAME_LENGTH:
        sanitized = sanitized[:MAX_NAME_LENGTH].rstrip("-_.")

    return sanitized or DEFAULT_LABEL_VALUE


def is_valid_name(name: str) -> bool:
    """Check whether a name is already a valid DNS label."""
    return bool(_DNS_LABEL.match(name or ""))


__all__ = [
    "DEFAULT_NAME",
    "MAX_NAME_LENGTH",
    "is_valid_name",
    "sanitize_label_value",
    "sanitize_name",
]
