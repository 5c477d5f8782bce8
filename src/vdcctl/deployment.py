"""Deployment orchestration.

Composes the provisioning core for one deploy request:

    catalog -> quota check -> manifest materialization -> submission

Templates that carry objects are materialized by the ManifestBuilder and
the returned VM is "Provisioning" until the control plane reports otherwise.
Templates without objects (and every deploy on a builder-less composition,
such as the simulator) go through ProvisioningDriver.create_vm and the
returned VM is "Stopped".
"""

import logging
from datetime import datetime, timezone

from vdcctl.call_context import CallContext
from vdcctl.drivers.base import ProvisioningDriver
from vdcctl.errors import ConflictError, ConflictReason, NotFoundError, ProvisioningError
from vdcctl.manifest_builder import ManifestBuilder
from vdcctl.models import (
    PHASE_PROVISIONING,
    PHASE_STOPPED,
    DeployRequest,
    Template,
    VirtualDataCenter,
    VirtualMachine,
)
from vdcctl.naming import sanitize_label_value, sanitize_name
from vdcctl.quota_enforcer import QuotaEnforcer, check_limit_range, resource_usage
from vdcctl.template_catalog import TemplateCatalog

logger = logging.getLogger(__name__)


def vm_id_for(vm_name: str) -> str:
    """Stable VM identity derived from the requested name."""
    return f"vm-{sanitize_name(vm_name)}"


class DeploymentService:
    """Deploy VMs from catalog templates into VDC namespaces."""

    def __init__(
        self,
        catalog: TemplateCatalog,
        driver: ProvisioningDriver,
        enforcer: QuotaEnforcer | None = None,
        builder: ManifestBuilder | None = None,
        label_domain: str = "vdcctl.io",
    ):
        """Initialize deployment service.

        Args:
            catalog: Template source
            driver: Lifecycle backend
            enforcer: Reads namespace limit ranges (optional; skipped when None)
            builder: Submits template objects (optional; driver.create_vm when None)
            label_domain: Prefix for ownership labels
        """
        self.catalog = catalog
        self.driver = driver
        self.enforcer = enforcer
        self.builder = builder
        self.label_domain = label_domain

    def plan(self, request: DeployRequest, template: Template) -> VirtualMachine:
        """Build the VM record a request would create."""
        return VirtualMachine(
            id=vm_id_for(request.vm_name),
            name=request.vm_name,
            cpu=template.cpu,
            memory=template.memory,
            disk_size=request.disk_size or template.disk_size,
            template_id=template.id,
            vdc_id=request.vdc_id,
            namespace=request.target_namespace,
        )

    def deploy(
        self,
        request: DeployRequest,
        vdc: VirtualDataCenter,
        existing_vms: list[VirtualMachine] | None = None,
        ctx: CallContext | None = None,
    ) -> VirtualMachine:
        """Deploy a VM from a template.

        Args:
            request: What to deploy and where
            vdc: VDC the request is charged against
            existing_vms: VMs already deployed (enables remaining-quota checks)
            ctx: Call deadline and cancellation

        Returns:
            The deployed VM record

        Raises:
            NotFoundError: If the template does not exist
            ResourceExceededError: If the VM does not fit the VDC quota
            LimitRangeViolationError: If the VM is outside the namespace per-VM bounds
            MaterializationError: If the template cannot be materialized or submitted
            ConflictError: If the VM already exists
        """
        if request.vdc_id != vdc.id:
            raise ProvisioningError(
                f"Deploy request targets VDC {request.vdc_id}, but VDC {vdc.id} was supplied"
            )

        template = self.catalog.get_template(request.template_name)
        vm = self.plan(request, template)

        usage = resource_usage(vdc, existing_vms) if existing_vms is not None else None
        QuotaEnforcer.validate_resources(vm, vdc, usage)
        if self.enforcer is not None:
            check_limit_range(vm, self.enforcer.get_limit_range(request.target_namespace, ctx))

        vm.created_at = datetime.now(timezone.utc).isoformat()
        if self.builder is not None and template.objects:
            self._ensure_absent(vm, ctx)
            self.builder.deploy(
                template,
                request,
                ctx,
                labels=self._ownership_labels(vm, vdc),
                annotations={f"{self.label_domain}/vm-id": vm.id},
            )
            vm.status = PHASE_PROVISIONING
        else:
            self.driver.create_vm(vm, vdc, template, ctx)
            vm.status = PHASE_STOPPED

        logger.info(
            f"Deployed {vm.name} ({vm.id}) from {request.template_name} "
            f"into {request.target_namespace}"
        )
        return vm

    def _ensure_absent(self, vm: VirtualMachine, ctx: CallContext | None) -> None:
        try:
            self.driver.get_vm_status(vm.id, vm.namespace, ctx)
        except NotFoundError:
            return
        raise ConflictError(
            ConflictReason.ALREADY_EXISTS, f"VM {vm.id} already exists in namespace {vm.namespace}"
        )

    def _ownership_labels(self, vm: VirtualMachine, vdc: VirtualDataCenter) -> dict[str, str]:
        return {
            f"{self.label_domain}/vm-id": sanitize_label_value(vm.id),
            f"{self.label_domain}/vdc-id": sanitize_label_value(vdc.id),
            f"{self.label_domain}/template-id": sanitize_label_value(vm.template_id),
            "app.kubernetes.io/managed-by": "vdcctl",
        }


__all__ = ["DeploymentService", "vm_id_for"]
