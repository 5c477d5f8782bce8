"""Provisioning drivers.

The driver is chosen once, when the application is composed:

    driver = create_driver(config)                       # from config.driver
    driver = create_driver(config, registry=registry)    # shared simulator state

Nothing in the core switches drivers at runtime; falling back to the
simulator when the cluster is unreachable is the caller's decision.
"""

from vdcctl.config_manager import DRIVER_CLUSTER, DRIVER_SIMULATED, ConfigError, VdcctlConfig
from vdcctl.drivers.base import ProvisioningDriver, console_url
from vdcctl.drivers.cluster import ClusterDriver
from vdcctl.drivers.simulated import SimulatedDriver, SimulatedRegistry
from vdcctl.kube_client import ClusterClient, KubectlClient


def create_cluster_client(config: VdcctlConfig) -> KubectlClient:
    """Build the kubectl-backed client described by a config."""
    return KubectlClient(
        kubectl_path=config.kubectl_path,
        context=config.kube_context,
        kubeconfig=config.kubeconfig,
        timeout=config.request_timeout,
    )


def create_driver(
    config: VdcctlConfig,
    registry: SimulatedRegistry | None = None,
    client: ClusterClient | None = None,
) -> ProvisioningDriver:
    """Build the driver selected by config.driver.

    Args:
        config: Application configuration
        registry: State for the simulated driver (default: a new, empty registry)
        client: Control-plane client for the cluster driver (default: from config)

    Raises:
        ConfigError: If config.driver names no known driver
    """
    if config.driver == DRIVER_SIMULATED:
        return SimulatedDriver(
            registry if registry is not None else SimulatedRegistry(), config.label_domain
        )
    if config.driver == DRIVER_CLUSTER:
        return ClusterDriver(
            client if client is not None else create_cluster_client(config), config.label_domain
        )
    raise ConfigError(f"Unknown driver: {config.driver}")


__all__ = [
    "ClusterDriver",
    "ProvisioningDriver",
    "SimulatedDriver",
    "SimulatedRegistry",
    "console_url",
    "create_cluster_client",
    "create_driver",
]
