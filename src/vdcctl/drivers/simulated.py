"""In-memory provisioning backend.

Keeps VMs in a SimulatedRegistry keyed by "namespace/id". The registry is
constructed by the caller and passed in, so several drivers (or a test) can
share one registry explicitly.

Every operation holds the registry lock for its whole read-check-write
sequence, and checks the CallContext before touching anything, so a VM
record is never observed half-updated and a cancelled call changes nothing.

IPs are drawn from 192.168.1.0/24. The first candidate is derived from the
registry size; candidates held by running VMs are skipped.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from vdcctl.call_context import CallContext, check_context
from vdcctl.drivers.base import console_url
from vdcctl.errors import ConflictError, ConflictReason, NotFoundError, ProvisioningError
from vdcctl.models import (
    PHASE_RUNNING,
    PHASE_STOPPED,
    Template,
    VirtualDataCenter,
    VirtualMachine,
    VMStatus,
)
from vdcctl.status_normalizer import normalize_status

logger = logging.getLogger(__name__)

IP_PREFIX = "192.168.1."
IP_POOL_SIZE = 254
SIMULATED_NODE = "simulated-node-0"


@dataclass
class SimulatedVM:
    """One VM record in the simulated registry."""

    id: str
    name: str
    namespace: str
    cpu: int
    memory: str
    disk_size: str
    vdc_id: str = ""
    template_id: str = ""
    template_name: str = ""
    phase: str = PHASE_STOPPED
    ip_address: str = ""
    created_at: str = ""

    @property
    def running(self) -> bool:
        return self.phase == PHASE_RUNNING


@dataclass
class SimulatedRegistry:
    """Shared state for SimulatedDriver instances.

    Attributes:
        vms: VM records keyed by "namespace/id"
        lock: Guards every read and mutation of vms
    """

    vms: dict[str, SimulatedVM] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @staticmethod
    def key(vm_id: str, namespace: str) -> str:
        return f"{namespace}/{vm_id}"

    def __len__(self) -> int:
        with self.lock:
            return len(self.vms)

    def keys(self) -> list[str]:
        """Snapshot of registered keys."""
        with self.lock:
            return sorted(self.vms)


def _mac_for(ip_address: str) -> str:
    last_octet = int(ip_address.rsplit(".", 1)[1])
    return f"52:54:00:00:01:{last_octet:02x}"


class SimulatedDriver:
    """Deterministic in-memory ProvisioningDriver."""

    def __init__(self, registry: SimulatedRegistry, label_domain: str = "vdcctl.io"):
        self.registry = registry
        self.label_domain = label_domain

    # ------------------------------------------------------------------
    # Registry helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _lookup(self, vm_id: str, namespace: str) -> SimulatedVM:
        record = self.registry.vms.get(SimulatedRegistry.key(vm_id, namespace))
        if record is None:
            raise NotFoundError(f"VM {vm_id} not found in namespace {namespace}")
        return record

    def _allocate_ip(self) -> str:
        in_use = {vm.ip_address for vm in self.registry.vms.values() if vm.running}
        start = len(self.registry.vms) % IP_POOL_SIZE
        for offset in range(IP_POOL_SIZE):
            candidate = f"{IP_PREFIX}{(start + offset) % IP_POOL_SIZE + 1}"
            if candidate not in in_use:
                return candidate
        raise ProvisioningError("Simulated IP pool exhausted")

    def _render(self, record: SimulatedVM) -> tuple[dict[str, Any], dict[str, Any] | None]:
        """Render a record as primary and instance documents."""
        domain = self.label_domain
        primary = {
            "apiVersion": "kubevirt.io/v1",
            "kind": "VirtualMachine",
            "metadata": {
                "name": record.name,
                "namespace": record.namespace,
                "annotations": {
                    f"{domain}/vm-id": record.id,
                    f"{domain}/template-name": record.template_name,
                    f"{domain}/created-at": record.created_at,
                    f"{domain}/simulated": "true",
                },
            },
            "spec": {"running": record.running},
            "status": {
                "ready": record.running,
                "conditions": [
                    {
                        "type": "Ready",
                        "status": "True" if record.running else "False",
                        "reason": "Simulated",
                    }
                ],
            },
        }
        if not record.running:
            return primary, None

        instance = {
            "apiVersion": "kubevirt.io/v1",
            "kind": "VirtualMachineInstance",
            "metadata": {"name": record.name, "namespace": record.namespace},
            "status": {
                "phase": record.phase,
                "nodeName": SIMULATED_NODE,
                "interfaces": [
                    {
                        "name": "default",
                        "ipAddress": record.ip_address,
                        "mac": _mac_for(record.ip_address),
                    }
                ],
            },
        }
        return primary, instance

    # ------------------------------------------------------------------
    # ProvisioningDriver
    # ------------------------------------------------------------------

    def create_vm(
        self,
        vm: VirtualMachine,
        vdc: VirtualDataCenter,
        template: Template,
        ctx: CallContext | None = None,
    ) -> None:
        key = SimulatedRegistry.key(vm.id, vdc.namespace)
        with self.registry.lock:
            if key in self.registry.vms:
                raise ConflictError(
                    ConflictReason.ALREADY_EXISTS,
                    f"VM {vm.id} already exists in namespace {vdc.namespace}",
                )
            check_context(ctx, f"create VM {vm.id}")
            self.registry.vms[key] = SimulatedVM(
                id=vm.id,
                name=vm.name,
                namespace=vdc.namespace,
                cpu=vm.cpu,
                memory=vm.memory,
                disk_size=vm.disk_size,
                vdc_id=vdc.id,
                template_id=template.id,
                template_name=template.name,
                created_at=datetime.now(timezone.utc).isoformat(),
            )
        logger.info(f"Simulated VM {vm.id} created in {vdc.namespace}")

    def get_vm_status(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> VMStatus:
        with self.registry.lock:
            check_context(ctx, f"get status of VM {vm_id}")
            primary, instance = self._render(self._lookup(vm_id, namespace))
        return normalize_status(primary, instance)

    def start_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        with self.registry.lock:
            record = self._lookup(vm_id, namespace)
            if record.running:
                raise ConflictError(
                    ConflictReason.ALREADY_RUNNING, f"VM {vm_id} is already running"
                )

            check_context(ctx, f"start VM {vm_id}")
            record.ip_address = self._allocate_ip()
            record.phase = PHASE_RUNNING
            ip_address = record.ip_address
        logger.info(f"Simulated VM {vm_id} started in {namespace} (IP: {ip_address})")

    def stop_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        with self.registry.lock:
            record = self._lookup(vm_id, namespace)
            if not record.running:
                raise ConflictError(
                    ConflictReason.ALREADY_STOPPED, f"VM {vm_id} is already stopped"
                )

            check_context(ctx, f"stop VM {vm_id}")
            record.phase = PHASE_STOPPED
            record.ip_address = ""
        logger.info(f"Simulated VM {vm_id} stopped in {namespace}")

    def restart_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        with self.registry.lock:
            record = self._lookup(vm_id, namespace)
            if not record.running:
                raise ConflictError(
                    ConflictReason.NOT_RUNNING, f"VM {vm_id} must be running to restart"
                )
            check_context(ctx, f"restart VM {vm_id}")
            # Release the current address before drawing a fresh one
            record.phase = PHASE_STOPPED
            record.ip_address = self._allocate_ip()
            record.phase = PHASE_RUNNING
            ip_address = record.ip_address
        logger.info(f"Simulated VM {vm_id} restarted in {namespace} (IP: {ip_address})")

    def delete_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        with self.registry.lock:
            self._lookup(vm_id, namespace)
            check_context(ctx, f"delete VM {vm_id}")
            del self.registry.vms[SimulatedRegistry.key(vm_id, namespace)]
        logger.info(f"Simulated VM {vm_id} deleted from {namespace}")

    def get_vm_ip_address(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> str:
        status = self.get_vm_status(vm_id, namespace, ctx)
        if not status.ip_address:
            raise ConflictError(
                ConflictReason.NO_IP_ASSIGNED, f"VM {vm_id} does not have an IP address assigned"
            )
        return status.ip_address

    def get_vm_console_url(
        self, vm_id: str, namespace: str, ctx: CallContext | None = None
    ) -> str:
        with self.registry.lock:
            check_context(ctx, f"get console of VM {vm_id}")
            self._lookup(vm_id, namespace)
        return console_url(vm_id, namespace)

    def check_connection(self, ctx: CallContext | None = None) -> None:
        check_context(ctx, "check connection")
        logger.debug("Simulated backend is always reachable")


__all__ = ["IP_PREFIX", "SimulatedDriver", "SimulatedRegistry", "SimulatedVM"]
