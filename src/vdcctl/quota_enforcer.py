"""VDC quota enforcement.

Validates VM resource requests against a virtual data center's ceilings and
materializes the two cluster objects that let the control plane enforce the
same bounds:

- LimitRange "vm-limits": per-VM min/max/default CPU and memory
- ResourceQuota "vdc-quota": aggregate CPU, memory, storage and PVC count

CPU is encoded in milli-cores on the LimitRange and in whole-or-milli cores
on the ResourceQuota; memory and storage are always whole GiB.
"""

import logging
from typing import Any

from vdcctl.call_context import CallContext
from vdcctl.errors import (
    LimitRangeViolationError,
    NotFoundError,
    ProvisioningError,
    ResourceDimension,
    ResourceExceededError,
)
from vdcctl.kube_client import LIMIT_RANGES, RESOURCE_QUOTAS, ClusterClient
from vdcctl.models import (
    PHASE_PROVISIONING,
    PHASE_RUNNING,
    PHASE_STOPPED,
    LimitRangeInfo,
    ResourceUsage,
    VirtualDataCenter,
    VirtualMachine,
)
from vdcctl.quantity import cpu_quantity, gib_quantity, milli_cpu_quantity, parse_cpu, to_gib
from vdcctl.unstructured import nested_list, nested_map

logger = logging.getLogger(__name__)

LIMIT_RANGE_NAME = "vm-limits"
RESOURCE_QUOTA_NAME = "vdc-quota"
MAX_PERSISTENT_VOLUME_CLAIMS = "10"

# VMs in these phases hold their resources
DEPLOYED_PHASES = frozenset({PHASE_RUNNING, PHASE_STOPPED, PHASE_PROVISIONING, "Paused"})


def _labels(component: str) -> dict[str, str]:
    return {
        "app.kubernetes.io/name": "vdcctl",
        "app.kubernetes.io/component": component,
        "app.kubernetes.io/managed-by": "vdcctl",
    }


def build_limit_range(
    namespace: str, min_cpu: int, max_cpu: int, min_memory: int, max_memory: int
) -> dict[str, Any]:
    """Build the per-VM LimitRange document."""
    minimum = {"cpu": milli_cpu_quantity(min_cpu), "memory": gib_quantity(min_memory)}
    maximum = {"cpu": milli_cpu_quantity(max_cpu), "memory": gib_quantity(max_memory)}
    return {
        "apiVersion": "v1",
        "kind": "LimitRange",
        "metadata": {
            "name": LIMIT_RANGE_NAME,
            "namespace": namespace,
            "labels": _labels("limitrange"),
        },
        "spec": {
            "limits": [
                {
                    "type": "Container",
                    "default": dict(maximum),
                    "defaultRequest": dict(minimum),
                    "min": minimum,
                    "max": maximum,
                }
            ]
        },
    }


def build_resource_quota(namespace: str, cpu: float, memory: int, storage: int) -> dict[str, Any]:
    """Build the aggregate ResourceQuota document. Dimensions <= 0 are omitted."""
    hard: dict[str, str] = {}
    if cpu > 0:
        hard["requests.cpu"] = cpu_quantity(cpu)
        hard["limits.cpu"] = cpu_quantity(cpu)
    if memory > 0:
        hard["requests.memory"] = gib_quantity(memory)
        hard["limits.memory"] = gib_quantity(memory)
    if storage > 0:
        hard["requests.storage"] = gib_quantity(storage)
        hard["persistentvolumeclaims"] = MAX_PERSISTENT_VOLUME_CLAIMS

    return {
        "apiVersion": "v1",
        "kind": "ResourceQuota",
        "metadata": {
            "name": RESOURCE_QUOTA_NAME,
            "namespace": namespace,
            "labels": _labels("resource-quota"),
        },
        "spec": {"hard": hard},
    }


def parse_limit_range(document: dict[str, Any]) -> LimitRangeInfo:
    """Read per-VM bounds from the first Container item of a LimitRange."""
    for item in nested_list(document, "spec", "limits") or []:
        if not isinstance(item, dict) or item.get("type") != "Container":
            continue
        minimum = nested_map(item, "min") or {}
        maximum = nested_map(item, "max") or {}
        return LimitRangeInfo(
            exists=True,
            min_cpu=_cores(minimum.get("cpu")),
            max_cpu=_cores(maximum.get("cpu")),
            min_memory=_whole_gib(minimum.get("memory")),
            max_memory=_whole_gib(maximum.get("memory")),
        )
    return LimitRangeInfo(exists=True)


def _cores(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(parse_cpu(value))
    except ValueError:
        logger.warning(f"Ignoring unparseable CPU bound: {value!r}")
        return 0


def _whole_gib(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(to_gib(value))
    except ValueError:
        logger.warning(f"Ignoring unparseable memory bound: {value!r}")
        return 0


def _requested(vm: VirtualMachine) -> tuple[int, float, float]:
    try:
        return vm.cpu, vm.memory_gib(), vm.disk_gib()
    except ValueError as e:
        raise ProvisioningError(f"VM {vm.name} has an invalid resource request: {e}") from e


def validate_resources(
    vm: VirtualMachine, vdc: VirtualDataCenter, usage: ResourceUsage | None = None
) -> None:
    """Check a VM request against a VDC's ceilings.

    Dimensions are checked in order CPU, Memory, Storage; the first one
    exceeded is reported. Ceilings <= 0 are unbounded. When usage is given,
    the request is compared against what remains of each ceiling.

    Args:
        vm: VM being requested
        vdc: Target virtual data center
        usage: Resources already consumed in the VDC (optional)

    Raises:
        ResourceExceededError: If any dimension is exceeded
    """
    cpu, memory, storage = _requested(vm)
    cpu_left, memory_left, storage_left = (usage or ResourceUsage()).available(vdc)

    checks = (
        (ResourceDimension.CPU, cpu, cpu_left, " cores"),
        (ResourceDimension.MEMORY, memory, memory_left, "Gi"),
        (ResourceDimension.STORAGE, storage, storage_left, "Gi"),
    )
    for dimension, requested, limit, unit in checks:
        if requested > limit:
            logger.debug(f"VM {vm.name} rejected in VDC {vdc.id}: {dimension.value}")
            raise ResourceExceededError(dimension, requested, limit, unit)


def resource_usage(vdc: VirtualDataCenter, vms: list[VirtualMachine]) -> ResourceUsage:
    """Sum resources held by deployed VMs that belong to a VDC."""
    cpu = 0
    memory = 0.0
    storage = 0.0
    count = 0
    for vm in vms:
        if vm.vdc_id != vdc.id or vm.status not in DEPLOYED_PHASES:
            continue
        vm_cpu, vm_memory, vm_storage = _requested(vm)
        cpu += vm_cpu
        memory += vm_memory
        storage += vm_storage
        count += 1
    return ResourceUsage(cpu_used=cpu, memory_used=memory, storage_used=storage, vm_count=count)


def check_limit_range(vm: VirtualMachine, info: LimitRangeInfo) -> None:
    """Check a VM request against per-VM bounds. Zero bounds are not enforced.

    Raises:
        LimitRangeViolationError: If CPU or memory is outside the bounds
    """
    if not info.exists:
        return

    cpu, memory, _ = _requested(vm)
    if info.min_cpu > 0 and cpu < info.min_cpu:
        raise LimitRangeViolationError(
            ResourceDimension.CPU,
            f"VM CPU ({cpu} cores) is below the minimum of {info.min_cpu} cores",
        )
    if info.max_cpu > 0 and cpu > info.max_cpu:
        raise LimitRangeViolationError(
            ResourceDimension.CPU,
            f"VM CPU ({cpu} cores) exceeds the maximum of {info.max_cpu} cores",
        )
    if info.min_memory > 0 and memory < info.min_memory:
        raise LimitRangeViolationError(
            ResourceDimension.MEMORY,
            f"VM memory ({memory:g}Gi) is below the minimum of {info.min_memory}Gi",
        )
    if info.max_memory > 0 and memory > info.max_memory:
        raise LimitRangeViolationError(
            ResourceDimension.MEMORY,
            f"VM memory ({memory:g}Gi) exceeds the maximum of {info.max_memory}Gi",
        )


class QuotaEnforcer:
    """Validate VM requests and keep namespace quota objects in sync."""

    def __init__(self, client: ClusterClient):
        self.client = client

    validate_resources = staticmethod(validate_resources)
    resource_usage = staticmethod(resource_usage)
    check_limit_range = staticmethod(check_limit_range)

    def upsert_limit_range(
        self,
        namespace: str,
        min_cpu: int,
        max_cpu: int,
        min_memory: int,
        max_memory: int,
        ctx: CallContext | None = None,
    ) -> None:
        """Create the namespace's LimitRange, or update it in place if present.

        Raises:
            ProvisioningError: If the bounds are inverted or the cluster call fails
        """
        if min_cpu > max_cpu or min_memory > max_memory:
            raise ProvisioningError(
                f"Invalid limit range for {namespace}: minimum exceeds maximum "
                f"(cpu {min_cpu}-{max_cpu}, memory {min_memory}-{max_memory}Gi)"
            )

        document = build_limit_range(namespace, min_cpu, max_cpu, min_memory, max_memory)
        try:
            existing = self.client.get(LIMIT_RANGES, LIMIT_RANGE_NAME, namespace, ctx)
        except NotFoundError:
            self.client.create(LIMIT_RANGES, document, namespace, ctx)
            logger.info(f"Created limit range in {namespace}")
            return

        resource_version = (existing.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            document["metadata"]["resourceVersion"] = resource_version
        self.client.replace(LIMIT_RANGES, document, namespace, ctx)
        logger.info(f"Updated limit range in {namespace}")

    def upsert_resource_quota(
        self,
        namespace: str,
        cpu: float,
        memory: int,
        storage: int,
        ctx: CallContext | None = None,
    ) -> None:
        """Create the namespace's ResourceQuota, or update it in place if present."""
        document = build_resource_quota(namespace, cpu, memory, storage)
        try:
            existing = self.client.get(RESOURCE_QUOTAS, RESOURCE_QUOTA_NAME, namespace, ctx)
        except NotFoundError:
            self.client.create(RESOURCE_QUOTAS, document, namespace, ctx)
            logger.info(f"Created resource quota in {namespace}")
            return

        resource_version = (existing.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            document["metadata"]["resourceVersion"] = resource_version
        self.client.replace(RESOURCE_QUOTAS, document, namespace, ctx)
        logger.info(f"Updated resource quota in {namespace}")

    def delete_limit_range(self, namespace: str, ctx: CallContext | None = None) -> None:
        """Delete the namespace's LimitRange. Absence is not an error."""
        try:
            self.client.delete(LIMIT_RANGES, LIMIT_RANGE_NAME, namespace, ctx)
        except NotFoundError:
            logger.debug(f"No limit range to delete in {namespace}")
            return
        logger.info(f"Deleted limit range in {namespace}")

    def get_limit_range(self, namespace: str, ctx: CallContext | None = None) -> LimitRangeInfo:
        """Read the namespace's per-VM bounds; absence yields exists=False."""
        try:
            document = self.client.get(LIMIT_RANGES, LIMIT_RANGE_NAME, namespace, ctx)
        except NotFoundError:
            return LimitRangeInfo()
        return parse_limit_range(document)


__all__ = [
    "LIMIT_RANGE_NAME",
    "RESOURCE_QUOTA_NAME",
    "QuotaEnforcer",
    "build_limit_range",
    "build_resource_quota",
    "check_limit_range",
    "parse_limit_range",
    "resource_usage",
    "validate_resources",
]
