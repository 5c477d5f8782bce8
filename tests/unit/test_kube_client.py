"""Unit tests for kube_client module."""

import json
import subprocess
from unittest.mock import Mock, patch

import pytest

from vdcctl.call_context import CallContext
from vdcctl.errors import (
    BackendUnavailableError,
    ClusterCommandError,
    ConflictError,
    ConflictReason,
    NotFoundError,
    OperationCancelledError,
)
from vdcctl.kube_client import (
    LIMIT_RANGES,
    VIRTUAL_MACHINES,
    KubectlClient,
    ResourceRef,
    classify_failure,
    is_connection_failure,
)
from vdcctl.retry_config import RetryConfig

FAST_RETRY = RetryConfig(max_attempts=3, initial_delay=0, max_delay=0, jitter_enabled=False)


def _completed(stdout=""):
    return Mock(returncode=0, stdout=stdout, stderr="")


def _failed(stderr, cmd=("kubectl",)):
    return subprocess.CalledProcessError(1, list(cmd), output="", stderr=stderr)


@pytest.fixture
def client():
    return KubectlClient(context="prod", timeout=10, retry_config=FAST_RETRY)


class TestResourceRef:
    """Tests for ResourceRef."""

    def test_from_api_version(self):
        """Test grouped and core apiVersions."""
        assert ResourceRef.from_api_version("kubevirt.io/v1", "virtualmachines") == VIRTUAL_MACHINES
        assert ResourceRef.from_api_version("v1", "limitranges") == LIMIT_RANGES

    def test_names_and_paths(self):
        """Test kubectl names and discovery paths."""
        assert VIRTUAL_MACHINES.kubectl_name == "virtualmachines.v1.kubevirt.io"
        assert VIRTUAL_MACHINES.api_path == "/apis/kubevirt.io/v1"
        assert LIMIT_RANGES.kubectl_name == "limitranges"
        assert LIMIT_RANGES.api_path == "/api/v1"


class TestClassifyFailure:
    """Tests for kubectl error translation."""

    def test_not_found(self):
        """Test NotFound rejections."""
        error = classify_failure(
            "get vm", 'Error from server (NotFound): virtualmachines "x" not found'
        )
        assert isinstance(error, NotFoundError)

    def test_already_exists(self):
        """Test AlreadyExists rejections."""
        error = classify_failure(
            "create vm", 'Error from server (AlreadyExists): virtualmachines "x" already exists'
        )
        assert isinstance(error, ConflictError)
        assert error.reason == ConflictReason.ALREADY_EXISTS

    @pytest.mark.parametrize(
        "stderr",
        [
            "Unable to connect to the server: dial tcp 10.0.0.1:6443: i/o timeout",
            "The connection to the server localhost:8080 was refused - connection refused",
            "Error from server (ServiceUnavailable): "
            "the server is currently unable to handle the request",
        ],
    )
    def test_connection_failures(self, stderr):
        """Test connectivity problems map to BackendUnavailableError."""
        assert is_connection_failure(stderr)
        assert isinstance(classify_failure("get vm", stderr), BackendUnavailableError)

    def test_other_rejections(self):
        """Test unclassified rejections."""
        error = classify_failure("create vm", "Error from server (Forbidden): denied")
        assert isinstance(error, ClusterCommandError)
        assert "create vm" in str(error)

    def test_empty_stderr(self):
        """Test an empty error message still yields an error."""
        assert "kubectl exited with an error" in str(classify_failure("x", ""))


class TestKubectlClient:
    """Tests for KubectlClient commands."""

    @patch("vdcctl.kube_client.subprocess.run")
    def test_get(self, mock_run, client):
        """Test get builds the command and parses JSON."""
        mock_run.return_value = _completed(json.dumps({"metadata": {"name": "web-01"}}))

        result = client.get(VIRTUAL_MACHINES, "web-01", "tenant-a")

        assert result["metadata"]["name"] == "web-01"
        cmd = mock_run.call_args[0][0]
        assert cmd == [
            "kubectl",
            "--context",
            "prod",
            "get",
            "virtualmachines.v1.kubevirt.io",
            "web-01",
            "-n",
            "tenant-a",
            "-o",
            "json",
        ]
        assert mock_run.call_args[1]["timeout"] == 10
        assert mock_run.call_args[1]["check"] is True

    @patch("vdcctl.kube_client.subprocess.run")
    def test_kubeconfig_flag(self, mock_run):
        """Test the kubeconfig path is passed through."""
        mock_run.return_value = _completed("{}")
        KubectlClient(kubeconfig="/tmp/kc", retry_config=FAST_RETRY).get(
            LIMIT_RANGES, "vm-limits", "tenant-a"
        )
        assert mock_run.call_args[0][0][:3] == ["kubectl", "--kubeconfig", "/tmp/kc"]

    @patch("vdcctl.kube_client.subprocess.run")
    def test_list_with_labels(self, mock_run, client):
        """Test label selectors are sorted and joined."""
        mock_run.return_value = _completed(
            json.dumps({"items": [{"metadata": {"name": "a"}}, "junk"]})
        )

        items = client.list_objects(VIRTUAL_MACHINES, "tenant-a", {"b": "2", "a": "1"})

        assert items == [{"metadata": {"name": "a"}}]
        cmd = mock_run.call_args[0][0]
        assert cmd[-2:] == ["-l", "a=1,b=2"]

    @patch("vdcctl.kube_client.subprocess.run")
    def test_create_passes_object_on_stdin(self, mock_run, client):
        """Test the object is sent on stdin, never as an argument."""
        obj = {"apiVersion": "v1", "kind": "LimitRange", "metadata": {"name": "vm-limits"}}
        mock_run.return_value = _completed(json.dumps(obj))

        client.create(LIMIT_RANGES, obj, "tenant-a")

        cmd = mock_run.call_args[0][0]
        assert "create" in cmd
        assert json.loads(mock_run.call_args[1]["input"]) == obj
        assert all("vm-limits" not in arg for arg in cmd)

    @patch("vdcctl.kube_client.subprocess.run")
    def test_patch_uses_merge(self, mock_run, client):
        """Test patches are JSON merge patches."""
        mock_run.return_value = _completed("{}")

        client.patch(VIRTUAL_MACHINES, "web-01", "tenant-a", {"spec": {"running": True}})

        cmd = mock_run.call_args[0][0]
        assert cmd[cmd.index("--type") + 1] == "merge"
        assert json.loads(cmd[cmd.index("-p") + 1]) == {"spec": {"running": True}}

    @patch("vdcctl.kube_client.subprocess.run")
    def test_delete(self, mock_run, client):
        """Test delete does not wait for finalizers."""
        mock_run.return_value = _completed("")
        client.delete(VIRTUAL_MACHINES, "web-01", "tenant-a")
        assert "--wait=false" in mock_run.call_args[0][0]

    @patch("vdcctl.kube_client.subprocess.run")
    def test_not_found_translated(self, mock_run, client):
        """Test kubectl NotFound becomes NotFoundError without retries."""
        mock_run.side_effect = _failed('Error from server (NotFound): "web-01" not found')

        with pytest.raises(NotFoundError):
            client.get(VIRTUAL_MACHINES, "web-01", "tenant-a")
        assert mock_run.call_count == 1

    @patch("vdcctl.kube_client.subprocess.run")
    def test_connection_failure_retried(self, mock_run, client):
        """Test connectivity failures are retried, then surfaced."""
        mock_run.side_effect = _failed("Unable to connect to the server: connection refused")

        with pytest.raises(BackendUnavailableError):
            client.get(VIRTUAL_MACHINES, "web-01", "tenant-a")
        assert mock_run.call_count == 3

    @patch("vdcctl.kube_client.subprocess.run")
    def test_transient_failure_recovers(self, mock_run, client):
        """Test a retry succeeds after a transient failure."""
        mock_run.side_effect = [
            subprocess.TimeoutExpired(cmd="kubectl", timeout=10),
            _completed('{"metadata": {"name": "web-01"}}'),
        ]

        result = client.get(VIRTUAL_MACHINES, "web-01", "tenant-a")

        assert result["metadata"]["name"] == "web-01"
        assert mock_run.call_count == 2

    @patch("vdcctl.kube_client.subprocess.run")
    def test_create_not_retried(self, mock_run, client):
        """Test a create that may already be applied is not re-run."""
        mock_run.side_effect = [
            _failed("Unable to connect to the server: i/o timeout"),
            _failed('Error from server (AlreadyExists): virtualmachines "web-01" already exists'),
        ]

        with pytest.raises(BackendUnavailableError, match="i/o timeout"):
            client.create(VIRTUAL_MACHINES, {"metadata": {"name": "web-01"}}, "tenant-a")
        assert mock_run.call_count == 1

    @pytest.mark.parametrize("operation", ["replace", "delete"])
    @patch("vdcctl.kube_client.subprocess.run")
    def test_mutations_run_once_on_timeout(self, mock_run, operation, client):
        """Test replace and delete are not repeated after a timeout."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="kubectl", timeout=10)

        with pytest.raises(BackendUnavailableError, match="timed out"):
            if operation == "replace":
                client.replace(LIMIT_RANGES, {"metadata": {"name": "vm-limits"}}, "tenant-a")
            else:
                client.delete(VIRTUAL_MACHINES, "web-01", "tenant-a")
        assert mock_run.call_count == 1

    @patch("vdcctl.kube_client.subprocess.run")
    def test_patch_retried(self, mock_run, client):
        """Test merge patches are retried after a transient failure."""
        mock_run.side_effect = [
            _failed("Unable to connect to the server: connection refused"),
            _completed('{"spec": {"running": true}}'),
        ]

        result = client.patch(VIRTUAL_MACHINES, "web-01", "tenant-a", {"spec": {"running": True}})

        assert result["spec"]["running"] is True
        assert mock_run.call_count == 2

    @patch("vdcctl.kube_client.subprocess.run")
    def test_timeout_exhausted(self, mock_run, client):
        """Test repeated timeouts become BackendUnavailableError."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="kubectl", timeout=10)

        with pytest.raises(BackendUnavailableError, match="timed out"):
            client.get(VIRTUAL_MACHINES, "web-01", "tenant-a")

    @patch("vdcctl.kube_client.subprocess.run")
    def test_missing_kubectl(self, mock_run, client):
        """Test a missing binary is reported as unavailable."""
        mock_run.side_effect = FileNotFoundError("kubectl")

        with pytest.raises(BackendUnavailableError, match="kubectl not found"):
            client.ping(VIRTUAL_MACHINES)

    @patch("vdcctl.kube_client.subprocess.run")
    def test_invalid_json(self, mock_run, client):
        """Test unparseable output is a command error."""
        mock_run.return_value = _completed("not json")

        with pytest.raises(ClusterCommandError, match="failed to parse"):
            client.get(VIRTUAL_MACHINES, "web-01", "tenant-a")

    @patch("vdcctl.kube_client.subprocess.run")
    def test_ping_translates_rejection(self, mock_run, client):
        """Test a missing API group makes the backend unavailable."""
        mock_run.side_effect = _failed("Error from server (NotFound): the server could not find")

        with pytest.raises(BackendUnavailableError, match="/apis/kubevirt.io/v1"):
            client.ping(VIRTUAL_MACHINES)

    @patch("vdcctl.kube_client.subprocess.run")
    def test_cancelled_context_skips_command(self, mock_run, client):
        """Test nothing runs once the caller has cancelled."""
        ctx = CallContext()
        ctx.cancel()

        with pytest.raises(OperationCancelledError):
            client.delete(VIRTUAL_MACHINES, "web-01", "tenant-a", ctx)
        mock_run.assert_not_called()

    @patch("vdcctl.kube_client.subprocess.run")
    def test_deadline_caps_timeout(self, mock_run, client):
        """Test the per-call timeout never exceeds the remaining deadline."""
        mock_run.return_value = _completed("{}")

        client.get(VIRTUAL_MACHINES, "web-01", "tenant-a", CallContext(timeout=2))

        assert mock_run.call_args[1]["timeout"] <= 2
