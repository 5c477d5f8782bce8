"""vdcctl command-line interface.

Commands:
    templates     List VM templates
    render        Print the objects a template would create
    deploy        Deploy a VM from a template into a VDC
    status        Show a VM's status
    start         Start a stopped VM
    stop          Stop a running VM
    restart       Restart a running VM
    delete        Delete a VM
    ip            Print a VM's IP address
    console       Print a VM's console URL
    check         Check connectivity to the control plane
    quota         Manage namespace limit ranges and resource quotas
"""

import functools
import json
import logging
import sys
from collections.abc import Callable
from typing import Any

import click
import yaml
from rich.console import Console
from rich.table import Table

from vdcctl import __version__
from vdcctl.call_context import CallContext
from vdcctl.config_manager import DRIVER_SIMULATED, ConfigError, ConfigManager, VdcctlConfig
from vdcctl.deployment import DeploymentService
from vdcctl.drivers import ProvisioningDriver, create_cluster_client, create_driver
from vdcctl.errors import ProvisioningError
from vdcctl.kube_client import KubectlClient
from vdcctl.manifest_builder import ManifestBuilder, materialize
from vdcctl.models import PHASE_RUNNING, PHASE_STOPPED, DeployRequest, VirtualDataCenter
from vdcctl.quota_enforcer import QuotaEnforcer
from vdcctl.template_catalog import (
    ClusterTemplateSource,
    DirectoryTemplateSource,
    TEMPLATE_CATEGORIES,
    TemplateCatalog,
)

logger = logging.getLogger(__name__)

console = Console()


class AppContext:
    """Lazily composed application objects for one CLI invocation."""

    def __init__(self, config: VdcctlConfig, timeout: float | None = None):
        self.config = config
        self.timeout = timeout
        self._client: KubectlClient | None = None
        self._driver: ProvisioningDriver | None = None

    @property
    def simulated(self) -> bool:
        return self.config.driver == DRIVER_SIMULATED

    def call_context(self) -> CallContext:
        return CallContext(timeout=self.timeout)

    @property
    def client(self) -> KubectlClient:
        if self._client is None:
            self._client = create_cluster_client(self.config)
        return self._client

    @property
    def driver(self) -> ProvisioningDriver:
        if self._driver is None:
            client = None if self.simulated else self.client
            self._driver = create_driver(self.config, client=client)
        return self._driver

    def catalog(self, templates_dir: str | None = None) -> TemplateCatalog:
        directory = templates_dir or self.config.templates_dir
        if directory:
            return TemplateCatalog(DirectoryTemplateSource(directory))
        if self.simulated:
            raise ConfigError("Simulated mode reads templates from --templates-dir")
        return TemplateCatalog(ClusterTemplateSource(self.client, self.config.template_namespace))

    def deployment_service(self, templates_dir: str | None = None) -> DeploymentService:
        if self.simulated:
            return DeploymentService(
                self.catalog(templates_dir), self.driver, label_domain=self.config.label_domain
            )
        return DeploymentService(
            self.catalog(templates_dir),
            self.driver,
            enforcer=QuotaEnforcer(self.client),
            builder=ManifestBuilder(self.client),
            label_domain=self.config.label_domain,
        )


pass_app = click.make_pass_decorator(AppContext)


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report core errors as a one-line message and exit 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (ProvisioningError, ConfigError) as e:
            logger.debug("Command failed", exc_info=True)
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    return wrapper


def _phase_markup(phase: str) -> str:
    if phase == PHASE_RUNNING:
        return f"[green]{phase}[/green]"
    if phase == PHASE_STOPPED:
        return f"[red]{phase}[/red]"
    return f"[yellow]{phase}[/yellow]"


namespace_option = click.option(
    "--namespace", "-n", required=True, help="Namespace the VM lives in", type=str
)


@click.group(context_settings={"help_option_names": ["--help", "-h"]})
@click.option("--config", "config_path", help="Config file path", type=click.Path())
@click.option(
    "--simulate",
    is_flag=True,
    help="Use the in-memory simulated driver (VMs last only for this one command)",
)
@click.option("--context", "kube_context", help="kubeconfig context", type=str)
@click.option("--timeout", help="Deadline per command in seconds", type=float)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    simulate: bool,
    kube_context: str | None,
    timeout: float | None,
    verbose: bool,
) -> None:
    """vdcctl - provision VMs into virtual data centers on KubeVirt.

    \b
    Examples:
        vdcctl templates
        vdcctl deploy rhel9-server-small web-01 -n tenant-a --vdc-id vdc-1 --cpu-quota 8
        vdcctl start vm-web-01 -n tenant-a
        vdcctl quota apply tenant-a --cpu 8 --memory 16 --storage 100
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = ConfigManager.get_config(config_path)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if simulate:
        config.driver = DRIVER_SIMULATED
    if kube_context:
        config.kube_context = kube_context

    ctx.obj = AppContext(config, timeout=timeout)


# ============================================================================
# TEMPLATE COMMANDS
# ============================================================================


@main.command()
@click.option("--templates-dir", help="Read templates from a local directory", type=click.Path())
@click.option(
    "--category",
    type=click.Choice(TEMPLATE_CATEGORIES, case_sensitive=False),
    help="Only list templates of this category",
)
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@pass_app
@handle_errors
def templates(
    app: AppContext, templates_dir: str | None, category: str | None, as_json: bool
) -> None:
    """List available VM templates."""
    items = app.catalog(templates_dir).list_templates(category)

    if as_json:
        click.echo(json.dumps([t.to_dict() for t in items], indent=2))
        return

    if not items:
        console.print("[yellow]No templates found.[/yellow]")
        return

    table = Table(title="VM Templates", show_header=True)
    table.add_column("Template", style="cyan", no_wrap=True)
    table.add_column("Display Name", style="green")
    table.add_column("OS", style="white")
    table.add_column("CPU", style="yellow", justify="right")
    table.add_column("Memory", style="yellow")
    table.add_column("Disk", style="yellow")
    for t in items:
        os_label = f"{t.os_type} {t.os_version}".strip()
        name = f"{t.template_name} *" if t.featured else t.template_name
        table.add_row(name, t.name, os_label, str(t.cpu), t.memory, t.disk_size)
    console.print(table)
    if any(t.featured for t in items):
        console.print("* featured template")


@main.command()
@click.argument("template_name", type=str)
@click.argument("vm_name", type=str)
@namespace_option
@click.option("--disk-size", help="Override the template disk size (e.g. 50Gi)", type=str)
@click.option("--templates-dir", help="Read templates from a local directory", type=click.Path())
@pass_app
@handle_errors
def render(
    app: AppContext,
    template_name: str,
    vm_name: str,
    namespace: str,
    disk_size: str | None,
    templates_dir: str | None,
) -> None:
    """Print the objects TEMPLATE_NAME would create, as YAML.

    \b
    Examples:
        vdcctl render rhel9-server-small web-01 -n tenant-a
    """
    template = app.catalog(templates_dir).get_template(template_name)
    request = DeployRequest(
        template_name=template_name,
        vm_name=vm_name,
        target_namespace=namespace,
        vdc_id="",
        disk_size=disk_size or "",
    )
    click.echo(yaml.safe_dump_all(materialize(template, request), sort_keys=False), nl=False)


@main.command()
@click.argument("template_name", type=str)
@click.argument("vm_name", type=str)
@namespace_option
@click.option("--vdc-id", required=True, help="VDC the VM is charged against", type=str)
@click.option("--cpu-quota", default=0, help="VDC CPU ceiling in cores (0 = unbounded)", type=int)
@click.option("--memory-quota", default=0, help="VDC memory ceiling in GiB", type=int)
@click.option("--storage-quota", default=0, help="VDC storage ceiling in GiB", type=int)
@click.option("--disk-size", help="Override the template disk size (e.g. 50Gi)", type=str)
@click.option("--templates-dir", help="Read templates from a local directory", type=click.Path())
@pass_app
@handle_errors
def deploy(
    app: AppContext,
    template_name: str,
    vm_name: str,
    namespace: str,
    vdc_id: str,
    cpu_quota: int,
    memory_quota: int,
    storage_quota: int,
    disk_size: str | None,
    templates_dir: str | None,
) -> None:
    """Deploy VM_NAME from TEMPLATE_NAME into a VDC namespace."""
    vdc = VirtualDataCenter(
        id=vdc_id,
        namespace=namespace,
        cpu_quota=cpu_quota,
        memory_quota=memory_quota,
        storage_quota=storage_quota,
    )
    request = DeployRequest(
        template_name=template_name,
        vm_name=vm_name,
        target_namespace=namespace,
        vdc_id=vdc_id,
        disk_size=disk_size or "",
    )

    click.echo(f"Deploying '{vm_name}' from template '{template_name}'...")
    vm = app.deployment_service(templates_dir).deploy(request, vdc, ctx=app.call_context())
    click.echo(f"Success! VM {vm.id} is {vm.status} in {namespace}")


# ============================================================================
# LIFECYCLE COMMANDS
# ============================================================================


@main.command()
@click.argument("vm_id", type=str)
@namespace_option
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@pass_app
@handle_errors
def status(app: AppContext, vm_id: str, namespace: str, as_json: bool) -> None:
    """Show the status of a VM."""
    vm_status = app.driver.get_vm_status(vm_id, namespace, app.call_context())

    if as_json:
        click.echo(json.dumps(vm_status.to_dict(), indent=2))
        return

    table = Table(title=f"VM {vm_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Phase", _phase_markup(vm_status.phase))
    table.add_row("Ready", "yes" if vm_status.ready else "no")
    table.add_row("IP Address", vm_status.ip_address or "N/A")
    table.add_row("Node", vm_status.node_name or "N/A")
    for condition in vm_status.conditions:
        reason = f" ({condition.reason})" if condition.reason else ""
        table.add_row(f"Condition {condition.type}", f"{condition.status}{reason}")
    console.print(table)


def _lifecycle_command(name: str, verb: str, done: str) -> click.Command:
    @click.argument("vm_id", type=str)
    @namespace_option
    @pass_app
    @handle_errors
    def command(app: AppContext, vm_id: str, namespace: str) -> None:
        click.echo(f"{verb} VM '{vm_id}'...")
        operation = getattr(app.driver, f"{name}_vm")
        operation(vm_id, namespace, app.call_context())
        click.echo(f"Success! VM '{vm_id}' {done}")

    return main.command(name=name, help=f"{name.capitalize()} a VM.")(command)


start = _lifecycle_command("start", "Starting", "started")
stop = _lifecycle_command("stop", "Stopping", "stopped")
restart = _lifecycle_command("restart", "Restarting", "restarted")
delete = _lifecycle_command("delete", "Deleting", "deleted")


@main.command()
@click.argument("vm_id", type=str)
@namespace_option
@pass_app
@handle_errors
def ip(app: AppContext, vm_id: str, namespace: str) -> None:
    """Print the IP address of a running VM."""
    click.echo(app.driver.get_vm_ip_address(vm_id, namespace, app.call_context()))


@main.command(name="console")
@click.argument("vm_id", type=str)
@namespace_option
@pass_app
@handle_errors
def console_cmd(app: AppContext, vm_id: str, namespace: str) -> None:
    """Print the console URL of a VM."""
    click.echo(app.driver.get_vm_console_url(vm_id, namespace, app.call_context()))


@main.command()
@pass_app
@handle_errors
def check(app: AppContext) -> None:
    """Check connectivity to the control plane."""
    app.driver.check_connection(app.call_context())
    backend = "simulated backend" if app.simulated else "KubeVirt API"
    click.echo(f"OK: {backend} is reachable")


# ============================================================================
# QUOTA COMMANDS
# ============================================================================


@main.group()
def quota() -> None:
    """Manage namespace limit ranges and resource quotas."""


@quota.command(name="apply")
@click.argument("namespace", type=str)
@click.option("--cpu", default=0, help="Aggregate CPU ceiling in cores (0 = unbounded)", type=float)
@click.option("--memory", default=0, help="Aggregate memory ceiling in GiB", type=int)
@click.option("--storage", default=0, help="Aggregate storage ceiling in GiB", type=int)
@click.option("--min-cpu", help="Per-VM minimum cores", type=int)
@click.option("--max-cpu", help="Per-VM maximum cores", type=int)
@click.option("--min-memory", help="Per-VM minimum memory in GiB", type=int)
@click.option("--max-memory", help="Per-VM maximum memory in GiB", type=int)
@pass_app
@handle_errors
def quota_apply(
    app: AppContext,
    namespace: str,
    cpu: float,
    memory: int,
    storage: int,
    min_cpu: int | None,
    max_cpu: int | None,
    min_memory: int | None,
    max_memory: int | None,
) -> None:
    """Create or update the quota objects of NAMESPACE.

    Per-VM bounds are applied only when all four --min/--max options are given.

    \b
    Examples:
        vdcctl quota apply tenant-a --cpu 8 --memory 16 --storage 100
        vdcctl quota apply tenant-a --min-cpu 1 --max-cpu 4 --min-memory 1 --max-memory 8
    """
    enforcer = QuotaEnforcer(app.client)
    ctx = app.call_context()
    bounds = (min_cpu, max_cpu, min_memory, max_memory)

    if any(b is not None for b in bounds) and not all(b is not None for b in bounds):
        click.echo(
            "Error: --min-cpu, --max-cpu, --min-memory and --max-memory go together", err=True
        )
        sys.exit(1)

    if cpu > 0 or memory > 0 or storage > 0:
        enforcer.upsert_resource_quota(namespace, cpu, memory, storage, ctx)
        click.echo(f"Resource quota applied to {namespace}")
    if all(b is not None for b in bounds):
        enforcer.upsert_limit_range(namespace, min_cpu, max_cpu, min_memory, max_memory, ctx)
        click.echo(f"Limit range applied to {namespace}")


@quota.command(name="show")
@click.argument("namespace", type=str)
@pass_app
@handle_errors
def quota_show(app: AppContext, namespace: str) -> None:
    """Show the per-VM bounds of NAMESPACE."""
    info = QuotaEnforcer(app.client).get_limit_range(namespace, app.call_context())
    if not info.exists:
        console.print(f"[yellow]No limit range in {namespace}.[/yellow]")
        return

    table = Table(title=f"Limit range in {namespace}", show_header=True)
    table.add_column("Resource", style="cyan")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_row("CPU (cores)", str(info.min_cpu), str(info.max_cpu))
    table.add_row("Memory (GiB)", str(info.min_memory), str(info.max_memory))
    console.print(table)


@quota.command(name="clear")
@click.argument("namespace", type=str)
@pass_app
@handle_errors
def quota_clear(app: AppContext, namespace: str) -> None:
    """Delete the per-VM bounds of NAMESPACE."""
    QuotaEnforcer(app.client).delete_limit_range(namespace, app.call_context())
    click.echo(f"Limit range cleared in {namespace}")


if __name__ == "__main__":
    main()
