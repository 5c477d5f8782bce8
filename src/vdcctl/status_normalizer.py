"""Status normalization.

Turns the raw cluster view of a VM, a primary VirtualMachine document and an
optional running-instance document, into a canonical VMStatus.

Parsing is defensive: missing or mistyped fields fall back to defaults and a
malformed condition or interface entry still contributes what it can. Only a
document that is not a mapping at all raises MalformedObjectError.
"""

import logging
from typing import Any

from vdcctl.errors import MalformedObjectError
from vdcctl.models import PHASE_RUNNING, PHASE_STOPPED, VMCondition, VMInterface, VMStatus
from vdcctl.unstructured import nested_bool, nested_list, nested_map, nested_str

logger = logging.getLogger(__name__)


def normalize_status(primary: dict[str, Any], instance: dict[str, Any] | None = None) -> VMStatus:
    """Build a VMStatus from a primary object and its optional instance.

    Args:
        primary: The durable VM definition (status.ready, status.conditions)
        instance: The running instance, if one exists (status.phase, status.interfaces)

    Returns:
        Canonical VMStatus

    Raises:
        MalformedObjectError: If either document is not a mapping
    """
    if not isinstance(primary, dict):
        raise MalformedObjectError(f"VM object must be a mapping, got {type(primary).__name__}")
    if instance is not None and not isinstance(instance, dict):
        raise MalformedObjectError(
            f"VM instance object must be a mapping, got {type(instance).__name__}"
        )

    ready = nested_bool(primary, "status", "ready") or False
    status = VMStatus(
        phase=_resolve_phase(ready, instance),
        ready=ready,
        conditions=parse_conditions(nested_list(primary, "status", "conditions") or []),
        annotations=_string_map(nested_map(primary, "metadata", "annotations") or {}),
    )

    if instance is not None:
        status.node_name = nested_str(instance, "status", "nodeName") or None
        status.interfaces = parse_interfaces(nested_list(instance, "status", "interfaces") or [])
        status.ip_address = next((iface.ip for iface in status.interfaces if iface.ip), None)

    return status


def _resolve_phase(ready: bool, instance: dict[str, Any] | None) -> str:
    if instance is None:
        return PHASE_STOPPED

    phase = nested_str(instance, "status", "phase")
    if phase:
        return phase
    return PHASE_RUNNING if ready else PHASE_STOPPED


def parse_conditions(entries: list[Any]) -> list[VMCondition]:
    """Parse condition entries, keeping partially-filled ones."""
    conditions = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.debug(f"Skipping non-mapping condition entry: {entry!r}")
            continue
        conditions.append(
            VMCondition(
                type=nested_str(entry, "type") or "",
                status=nested_str(entry, "status") or "",
                reason=nested_str(entry, "reason") or "",
            )
        )
    return conditions


def parse_interfaces(entries: list[Any]) -> list[VMInterface]:
    """Parse interface entries, keeping partially-filled ones."""
    interfaces = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.debug(f"Skipping non-mapping interface entry: {entry!r}")
            continue
        interfaces.append(
            VMInterface(
                name=nested_str(entry, "name") or "",
                ip=nested_str(entry, "ipAddress") or "",
                mac=nested_str(entry, "mac") or "",
            )
        )
    return interfaces


def _string_map(data: dict[str, Any]) -> dict[str, str]:
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


__all__ = ["normalize_status", "parse_conditions", "parse_interfaces"]
