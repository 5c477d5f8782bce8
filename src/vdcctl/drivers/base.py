"""VM lifecycle contract shared by every provisioning backend.

Identity is the (namespace, vm_id) pair. Every operation accepts an optional
CallContext and either fully applies or raises without effect.

State transitions:
    create_vm   -> Stopped, no IP
    start_vm    Stopped -> Running, IP assigned   (ConflictError ALREADY_RUNNING)
    stop_vm     Running -> Stopped, IP cleared    (ConflictError ALREADY_STOPPED)
    restart_vm  Running -> Running, IP refreshed  (ConflictError NOT_RUNNING)
    delete_vm   any -> gone
"""

from typing import Protocol

from vdcctl.call_context import CallContext
from vdcctl.models import Template, VirtualDataCenter, VirtualMachine, VMStatus

CONSOLE_URL_FORMAT = (
    "/k8s/api/v1/namespaces/{namespace}/services/virt-console-proxy:8001/proxy/vm/{vm_id}/console"
)


def console_url(vm_id: str, namespace: str) -> str:
    """Console proxy path for a VM."""
    return CONSOLE_URL_FORMAT.format(namespace=namespace, vm_id=vm_id)


class ProvisioningDriver(Protocol):
    """Backend-agnostic VM lifecycle operations."""

    def create_vm(
        self,
        vm: VirtualMachine,
        vdc: VirtualDataCenter,
        template: Template,
        ctx: CallContext | None = None,
    ) -> None:
        """Register a new VM in the VDC namespace in the Stopped phase."""

    def get_vm_status(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> VMStatus:
        """Return the VM's current normalized status."""

    def start_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        """Start a stopped VM."""

    def stop_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        """Stop a running VM."""

    def restart_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        """Restart a running VM."""

    def delete_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        """Remove a VM and its cluster objects."""

    def get_vm_ip_address(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> str:
        """Return the VM's IP address."""

    def get_vm_console_url(
        self, vm_id: str, namespace: str, ctx: CallContext | None = None
    ) -> str:
        """Return the VM's console URL."""

    def check_connection(self, ctx: CallContext | None = None) -> None:
        """Verify the backend is reachable."""


__all__ = ["CONSOLE_URL_FORMAT", "ProvisioningDriver", "console_url"]
