"""Domain models for the provisioning core.

Templates are produced fresh by the catalog on each read and never mutated.
VirtualDataCenter is caller-owned input. VMStatus is derived on every query.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

from vdcctl.quantity import to_gib

# VM lifecycle phases reported by drivers
PHASE_STOPPED = "Stopped"
PHASE_RUNNING = "Running"
PHASE_PROVISIONING = "Provisioning"


@dataclass(frozen=True)
class TemplateParameter:
    """A parameter declared by a template."""

    name: str
    value: str = ""
    required: bool = False
    generate: str | None = None
    from_: str | None = None
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TemplateParameter":
        """Create parameter from a template document entry."""
        value = data.get("value")
        return cls(
            name=str(data.get("name", "")),
            value="" if value is None else str(value),
            required=bool(data.get("required", False)),
            generate=data.get("generate"),
            from_=data.get("from"),
            description=str(data.get("description", "")),
        )


@dataclass(frozen=True)
class Template:
    """A normalized VM template.

    `name` is the display name; `template_name` is the name in the template
    store. `parameters` and `objects` carry the raw material the
    ManifestBuilder needs.
    """

    id: str
    name: str
    template_name: str
    description: str = "Virtual Machine template"
    os_type: str = "Linux"
    os_version: str = ""
    cpu: int = 1
    memory: str = "2Gi"
    disk_size: str = "20Gi"
    namespace: str = ""
    image_url: str = ""
    icon_class: str = ""
    category: str = "Operating System"
    featured: bool = False
    parameters: tuple[TemplateParameter, ...] = ()
    objects: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Summary dictionary without the raw parameters and objects."""
        data = asdict(self)
        data.pop("parameters")
        data.pop("objects")
        return data


@dataclass
class VirtualMachine:
    """A VM as tracked by the caller and passed to drivers."""

    id: str
    name: str
    cpu: int = 1
    memory: str = "2Gi"
    disk_size: str = "20Gi"
    status: str = PHASE_STOPPED
    template_id: str = ""
    vdc_id: str = ""
    namespace: str = ""
    ip_address: str = ""
    created_at: str = ""

    def memory_gib(self) -> float:
        """Requested memory in GiB."""
        return to_gib(self.memory)

    def disk_gib(self) -> float:
        """Requested disk in GiB."""
        return to_gib(self.disk_size)


@dataclass(frozen=True)
class VirtualDataCenter:
    """A tenant resource partition. Ceilings <= 0 are unbounded.

    Attributes:
        id: VDC identifier
        namespace: Workload namespace VMs are created in
        cpu_quota: CPU ceiling in cores
        memory_quota: Memory ceiling in GiB
        storage_quota: Storage ceiling in GiB
        org_id: Owning organization
    """

    id: str
    namespace: str
    cpu_quota: int = 0
    memory_quota: int = 0
    storage_quota: int = 0
    org_id: str = ""


@dataclass(frozen=True)
class DeployRequest:
    """Request to deploy a VM from a template into a VDC."""

    template_name: str
    vm_name: str
    target_namespace: str
    vdc_id: str
    disk_size: str = ""


@dataclass
class VMCondition:
    """A condition reported on the primary VM object."""

    type: str = ""
    status: str = ""
    reason: str = ""


@dataclass
class VMInterface:
    """A network interface reported on the running instance."""

    name: str = ""
    ip: str = ""
    mac: str = ""


@dataclass
class VMStatus:
    """Canonical VM status, derived per query."""

    phase: str
    ready: bool = False
    ip_address: str | None = None
    node_name: str | None = None
    conditions: list[VMCondition] = field(default_factory=list)
    interfaces: list[VMInterface] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)

    def is_running(self) -> bool:
        """Check if the VM is running."""
        return self.phase == PHASE_RUNNING

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return asdict(self)


@dataclass(frozen=True)
class LimitRangeInfo:
    """Per-VM bounds read back from the cluster (cores / GiB)."""

    exists: bool = False
    min_cpu: int = 0
    max_cpu: int = 0
    min_memory: int = 0
    max_memory: int = 0


@dataclass(frozen=True)
class ResourceUsage:
    """Aggregate resources consumed by VMs in one VDC."""

    cpu_used: int = 0
    memory_used: float = 0.0
    storage_used: float = 0.0
    vm_count: int = 0

    def available(self, vdc: VirtualDataCenter) -> tuple[float, float, float]:
        """Remaining (cpu, memory GiB, storage GiB); unbounded dimensions are inf."""
        return (
            _remaining(vdc.cpu_quota, self.cpu_used),
            _remaining(vdc.memory_quota, self.memory_used),
            _remaining(vdc.storage_quota, self.storage_used),
        )


def _remaining(quota: int, used: float) -> float:
    if quota <= 0:
        return float("inf")
    return max(0.0, quota - used)


__all__ = [
    "PHASE_PROVISIONING",
    "PHASE_RUNNING",
    "PHASE_STOPPED",
    "DeployRequest",
    "LimitRangeInfo",
    "ResourceUsage",
    "Template",
    "TemplateParameter",
    "VMCondition",
    "VMInterface",
    "VMStatus",
    "VirtualDataCenter",
    "VirtualMachine",
]
