"""
Shared test fixtures for vdcctl tests.

This module provides common fixtures used across the unit tests:
- Sample template documents (with and without objects)
- A local template directory
- Sample VDCs and VMs
- An in-memory control plane
"""

import copy
from typing import Any

import pytest
import yaml

from tests.mocks.fake_cluster import FakeClusterClient
from vdcctl.models import VirtualDataCenter, VirtualMachine

# ============================================================================
# TEMPLATE DOCUMENTS
# ============================================================================

RHEL_TEMPLATE: dict[str, Any] = {
    "apiVersion": "template.openshift.io/v1",
    "kind": "Template",
    "metadata": {
        "name": "rhel9-server-small",
        "namespace": "openshift",
        "uid": "4f1c2a9e-0000-4000-8000-000000000001",
        "annotations": {
            "openshift.io/display-name": "Red Hat Enterprise Linux 9 VM",
            "description": "RHEL 9 server template",
            "os.template.kubevirt.io/name": "Red Hat Enterprise Linux",
            "os.template.kubevirt.io/version": "9",
            "template.kubevirt.io/images": "registry.example.com/rhel9:latest",
            "iconClass": "icon-rhel",
        },
        "labels": {
            "flavor.template.kubevirt.io/small": "true",
            "os.template.kubevirt.io/rhel9.0": "true",
        },
    },
    "parameters": [
        {"name": "NAME", "required": True},
        {"name": "NAMESPACE"},
        {"name": "SIZE", "value": "30Gi"},
        {"name": "PASSWORD", "generate": "expression", "from": "[a-z0-9]{12}"},
    ],
    "objects": [
        {
            "apiVersion": "cdi.kubevirt.io/v1beta1",
            "kind": "DataVolume",
            "metadata": {"name": "${NAME}-rootdisk"},
            "spec": {"storage": {"resources": {"requests": {"storage": "${SIZE}"}}}},
        },
        {
            "apiVersion": "kubevirt.io/v1",
            "kind": "VirtualMachine",
            "metadata": {"name": "${NAME}", "labels": {"app": "${NAME}"}},
            "spec": {
                "running": False,
                "template": {
                    "spec": {
                        "domain": {"cpu": {"cores": 1}},
                        "volumes": [
                            {
                                "name": "cloudinitdisk",
                                "cloudInitNoCloud": {
                                    "userData": "#cloud-config\npassword: ${PASSWORD}\n"
                                },
                            }
                        ],
                    }
                },
            },
        },
    ],
}

UBUNTU_TEMPLATE: dict[str, Any] = {
    "apiVersion": "template.openshift.io/v1",
    "kind": "Template",
    "metadata": {
        "name": "ubuntu-large",
        "labels": {"flavor.template.kubevirt.io/large": "true"},
    },
    "parameters": [{"name": "NAME", "required": True}],
}


@pytest.fixture
def rhel_template_document() -> dict[str, Any]:
    """Full template document with parameters and objects."""
    return copy.deepcopy(RHEL_TEMPLATE)


@pytest.fixture
def ubuntu_template_document() -> dict[str, Any]:
    """Template document without objects."""
    return copy.deepcopy(UBUNTU_TEMPLATE)


@pytest.fixture
def templates_dir(tmp_path, rhel_template_document, ubuntu_template_document):
    """Local template directory holding both sample templates."""
    directory = tmp_path / "templates"
    directory.mkdir()
    (directory / "rhel9-server-small.yaml").write_text(yaml.safe_dump(rhel_template_document))
    (directory / "ubuntu-large.yml").write_text(yaml.safe_dump(ubuntu_template_document))
    return directory


# ============================================================================
# DOMAIN FIXTURES
# ============================================================================


@pytest.fixture
def vdc() -> VirtualDataCenter:
    """VDC with 8 cores, 16 GiB memory and 100 GiB storage."""
    return VirtualDataCenter(
        id="vdc-1", namespace="tenant-a", cpu_quota=8, memory_quota=16, storage_quota=100
    )


@pytest.fixture
def unbounded_vdc() -> VirtualDataCenter:
    """VDC without ceilings."""
    return VirtualDataCenter(id="vdc-free", namespace="tenant-free")


@pytest.fixture
def small_vm() -> VirtualMachine:
    """2 cores, 4 GiB memory, 20 GiB disk."""
    return VirtualMachine(
        id="vm-web-01", name="web-01", cpu=2, memory="4Gi", disk_size="20Gi", vdc_id="vdc-1"
    )


# ============================================================================
# CONTROL PLANE
# ============================================================================


@pytest.fixture
def fake_client() -> FakeClusterClient:
    """Empty in-memory control plane."""
    return FakeClusterClient()
