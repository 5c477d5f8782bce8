"""vdcctl - VM provisioning for tenant-partitioned KubeVirt clusters

Philosophy:
- One lifecycle contract, two interchangeable backends
- Quotas enforced before anything reaches the cluster
- Every operation raises to its caller; nothing is logged and dropped

vdcctl turns a catalog of VM templates and per-VDC resource ceilings into
VirtualMachine objects on a KubeVirt/OpenShift control plane.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
