"""KubeVirt-backed provisioning driver.

VMs are VirtualMachine objects labelled with "<domain>/vm-id". Running state
is the primary object's spec.running flag; the control plane creates a
VirtualMachineInstance of the same name while it is true.

Lifecycle mapping:
    start_vm    merge-patch spec.running=true
    stop_vm     merge-patch spec.running=false
    restart_vm  delete the VirtualMachineInstance (recreated while running)
    delete_vm   delete the VirtualMachine (the instance goes with it)
"""

import logging
from datetime import datetime, timezone
from typing import Any

from vdcctl.call_context import CallContext
from vdcctl.drivers.base import console_url
from vdcctl.errors import ConflictError, ConflictReason, NotFoundError
from vdcctl.kube_client import VIRTUAL_MACHINE_INSTANCES, VIRTUAL_MACHINES, ClusterClient
from vdcctl.models import Template, VirtualDataCenter, VirtualMachine, VMStatus
from vdcctl.naming import sanitize_label_value, sanitize_name
from vdcctl.status_normalizer import normalize_status
from vdcctl.unstructured import nested_bool, nested_map, nested_str

logger = logging.getLogger(__name__)

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "vdcctl"
CREATED_BY = "vdcctl-driver"


def cloud_init_user_data(vm: VirtualMachine) -> str:
    """Minimal cloud-config setting the guest hostname."""
    return f"#cloud-config\nhostname: {sanitize_name(vm.name)}\n"


def build_vm_manifest(
    vm: VirtualMachine,
    vdc: VirtualDataCenter,
    template: Template,
    label_domain: str = "vdcctl.io",
) -> dict[str, Any]:
    """Build the VirtualMachine object for a VM request.

    The VM is always created with spec.running false.
    """
    name = sanitize_name(vm.name)
    disks: list[dict[str, Any]] = []
    volumes: list[dict[str, Any]] = []

    if template.image_url:
        disks.append({"name": "containerdisk", "disk": {"bus": "virtio"}})
        volumes.append({"name": "containerdisk", "containerDisk": {"image": template.image_url}})

    disks.append({"name": "cloudinitdisk", "disk": {"bus": "virtio"}})
    volumes.append(
        {"name": "cloudinitdisk", "cloudInitNoCloud": {"userData": cloud_init_user_data(vm)}}
    )

    return {
        "apiVersion": "kubevirt.io/v1",
        "kind": "VirtualMachine",
        "metadata": {
            "name": name,
            "namespace": vdc.namespace,
            "labels": {
                f"{label_domain}/vm-id": sanitize_label_value(vm.id),
                f"{label_domain}/vdc-id": sanitize_label_value(vdc.id),
                f"{label_domain}/template-id": sanitize_label_value(template.id),
                MANAGED_BY_LABEL: MANAGED_BY,
            },
            "annotations": {
                f"{label_domain}/vm-id": vm.id,
                f"{label_domain}/template-name": template.name,
                f"{label_domain}/created-by": CREATED_BY,
                f"{label_domain}/created-at": datetime.now(timezone.utc).isoformat(),
            },
        },
        "spec": {
            "running": False,
            "template": {
                "metadata": {"labels": {f"{label_domain}/vm": name}},
                "spec": {
                    "domain": {
                        "cpu": {"cores": vm.cpu},
                        "resources": {"requests": {"memory": vm.memory}},
                        "devices": {
                            "disks": disks,
                            "interfaces": [{"name": "default", "bridge": {}}],
                        },
                    },
                    "networks": [{"name": "default", "pod": {}}],
                    "volumes": volumes,
                },
            },
        },
    }


class ClusterDriver:
    """ProvisioningDriver backed by a KubeVirt control plane."""

    def __init__(self, client: ClusterClient, label_domain: str = "vdcctl.io"):
        """Initialize cluster driver.

        Args:
            client: Control-plane client
            label_domain: Prefix for ownership labels and annotations
        """
        self.client = client
        self.label_domain = label_domain

    @property
    def vm_id_label(self) -> str:
        return f"{self.label_domain}/vm-id"

    def _find_vm(self, vm_id: str, namespace: str, ctx: CallContext | None) -> dict[str, Any]:
        """Locate the primary object for a VM id.

        Raises:
            NotFoundError: If no VirtualMachine carries the id
        """
        selector = {self.vm_id_label: sanitize_label_value(vm_id)}
        candidates = self.client.list_objects(VIRTUAL_MACHINES, namespace, selector, ctx)
        for candidate in candidates:
            annotations = nested_map(candidate, "metadata", "annotations") or {}
            if annotations.get(self.vm_id_label, vm_id) == vm_id:
                logger.debug(f"Found VM {vm_id} as {nested_str(candidate, 'metadata', 'name')}")
                return candidate
        raise NotFoundError(f"VM {vm_id} not found in namespace {namespace}")

    @staticmethod
    def _object_name(vm: dict[str, Any]) -> str:
        return nested_str(vm, "metadata", "name") or ""

    @staticmethod
    def _is_running(vm: dict[str, Any]) -> bool:
        return nested_bool(vm, "spec", "running") or False

    def _set_running(
        self, vm: dict[str, Any], namespace: str, running: bool, ctx: CallContext | None
    ) -> None:
        self.client.patch(
            VIRTUAL_MACHINES, self._object_name(vm), namespace, {"spec": {"running": running}}, ctx
        )

    def create_vm(
        self,
        vm: VirtualMachine,
        vdc: VirtualDataCenter,
        template: Template,
        ctx: CallContext | None = None,
    ) -> None:
        try:
            self._find_vm(vm.id, vdc.namespace, ctx)
        except NotFoundError:
            pass
        else:
            raise ConflictError(
                ConflictReason.ALREADY_EXISTS,
                f"VM {vm.id} already exists in namespace {vdc.namespace}",
            )

        manifest = build_vm_manifest(vm, vdc, template, self.label_domain)
        self.client.create(VIRTUAL_MACHINES, manifest, vdc.namespace, ctx)
        logger.info(f"VirtualMachine {manifest['metadata']['name']} created in {vdc.namespace}")

    def get_vm_status(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> VMStatus:
        primary = self._find_vm(vm_id, namespace, ctx)
        try:
            instance = self.client.get(
                VIRTUAL_MACHINE_INSTANCES, self._object_name(primary), namespace, ctx
            )
        except NotFoundError:
            instance = None
        return normalize_status(primary, instance)

    def start_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        vm = self._find_vm(vm_id, namespace, ctx)
        if self._is_running(vm):
            raise ConflictError(ConflictReason.ALREADY_RUNNING, f"VM {vm_id} is already running")

        self._set_running(vm, namespace, True, ctx)
        logger.info(f"VM {vm_id} started in {namespace}")

    def stop_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        vm = self._find_vm(vm_id, namespace, ctx)
        if not self._is_running(vm):
            raise ConflictError(ConflictReason.ALREADY_STOPPED, f"VM {vm_id} is already stopped")

        self._set_running(vm, namespace, False, ctx)
        logger.info(f"VM {vm_id} stopped in {namespace}")

    def restart_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        vm = self._find_vm(vm_id, namespace, ctx)
        if not self._is_running(vm):
            raise ConflictError(
                ConflictReason.NOT_RUNNING, f"VM {vm_id} must be running to restart"
            )

        try:
            self.client.delete(VIRTUAL_MACHINE_INSTANCES, self._object_name(vm), namespace, ctx)
        except NotFoundError:
            logger.debug(f"VM {vm_id} has no instance yet; nothing to restart")
            return
        logger.info(f"VM {vm_id} restarted in {namespace}")

    def delete_vm(self, vm_id: str, namespace: str, ctx: CallContext | None = None) -> None:
        vm = self._find_vm(vm_id, namespace, ctx)
        self.client.delete(VIRTUAL_MACHINES, self._object_name(vm), namespace, ctx)
        logger.info(f"VM {vm_id} deleted from {namespace}")

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
        self._find_vm(vm_id, namespace, ctx)
        return console_url(vm_id, namespace)

    def check_connection(self, ctx: CallContext | None = None) -> None:
        self.client.ping(VIRTUAL_MACHINES, ctx)
        logger.debug("KubeVirt API is reachable")


__all__ = ["ClusterDriver", "build_vm_manifest", "cloud_init_user_data"]
