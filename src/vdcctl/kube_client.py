"""Control-plane boundary.

ClusterClient is the narrow protocol the rest of the core talks to.
KubectlClient implements it by delegating to kubectl with JSON output, the
same way the control plane's own CLI tooling is driven.

Security:
- No shell=True
- Objects are passed on stdin, never interpolated into arguments
- Timeout enforcement on every call
- Credentials masked in retry logs

Error translation:
    kubectl "NotFound"                -> NotFoundError
    kubectl "AlreadyExists"           -> ConflictError(ALREADY_EXISTS)
    timeout / refused / missing binary -> BackendUnavailableError
    anything else                      -> ClusterCommandError

Connection failures and timeouts are retried for get, list, patch and ping.
Create, replace and delete run once.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Any, Protocol

from vdcctl.call_context import CallContext, check_context
from vdcctl.errors import (
    BackendUnavailableError,
    ClusterCommandError,
    ConflictError,
    ConflictReason,
    NotFoundError,
    ProvisioningError,
)
from vdcctl.retry_config import RetryConfig, get_retry_config
from vdcctl.retry_handler import retry_with_exponential_backoff, safe_error_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceRef:
    """Addressable resource type: API group, version and plural resource name."""

    group: str
    version: str
    resource: str

    @classmethod
    def from_api_version(cls, api_version: str, resource: str) -> "ResourceRef":
        """Build from an object's apiVersion ("kubevirt.io/v1" or "v1")."""
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(group=group, version=version, resource=resource)

    @property
    def kubectl_name(self) -> str:
        """Fully-qualified name kubectl accepts ("virtualmachines.v1.kubevirt.io")."""
        if self.group:
            return f"{self.resource}.{self.version}.{self.group}"
        return self.resource

    @property
    def api_path(self) -> str:
        """Discovery path for the resource's group/version."""
        if self.group:
            return f"/apis/{self.group}/{self.version}"
        return f"/api/{self.version}"


VIRTUAL_MACHINES = ResourceRef("kubevirt.io", "v1", "virtualmachines")
VIRTUAL_MACHINE_INSTANCES = ResourceRef("kubevirt.io", "v1", "virtualmachineinstances")
TEMPLATES = ResourceRef("template.openshift.io", "v1", "templates")
LIMIT_RANGES = ResourceRef("", "v1", "limitranges")
RESOURCE_QUOTAS = ResourceRef("", "v1", "resourcequotas")


class ClusterClient(Protocol):
    """Minimal object-store interface over the control plane.

    get and delete raise NotFoundError for missing objects; create raises
    ConflictError(ALREADY_EXISTS) for duplicates.
    """

    def get(
        self, ref: ResourceRef, name: str, namespace: str, ctx: CallContext | None = None
    ) -> dict[str, Any]:
        """Fetch one object."""

    def list_objects(
        self,
        ref: ResourceRef,
        namespace: str,
        labels: dict[str, str] | None = None,
        ctx: CallContext | None = None,
    ) -> list[dict[str, Any]]:
        """List objects, optionally filtered by label equality."""

    def create(
        self, ref: ResourceRef, obj: dict[str, Any], namespace: str, ctx: CallContext | None = None
    ) -> dict[str, Any]:
        """Create an object."""

    def replace(
        self, ref: ResourceRef, obj: dict[str, Any], namespace: str, ctx: CallContext | None = None
    ) -> dict[str, Any]:
        """Replace an existing object in place."""

    def patch(
        self,
        ref: ResourceRef,
        name: str,
        namespace: str,
        patch: dict[str, Any],
        ctx: CallContext | None = None,
    ) -> dict[str, Any]:
        """Apply a JSON merge patch."""

    def delete(
        self, ref: ResourceRef, name: str, namespace: str, ctx: CallContext | None = None
    ) -> None:
        """Delete an object."""

    def ping(self, ref: ResourceRef, ctx: CallContext | None = None) -> None:
        """Verify the control plane serves the given resource's API group."""


class _TransientCommandError(Exception):
    """kubectl failed for a reason worth retrying (connection-level)."""


_CONNECTION_FAILURE_MARKERS = (
    "unable to connect to the server",
    "connection refused",
    "i/o timeout",
    "tls handshake timeout",
    "no such host",
    "context deadline exceeded",
    "serviceunavailable",
    "the server is currently unable to handle the request",
)


def is_connection_failure(stderr: str) -> bool:
    """Check whether kubectl stderr describes a connectivity problem."""
    lowered = (stderr or "").lower()
    return any(marker in lowered for marker in _CONNECTION_FAILURE_MARKERS)


def classify_failure(operation: str, stderr: str) -> ProvisioningError:
    """Map a kubectl failure to a provisioning error kind."""
    message = (stderr or "").strip() or "kubectl exited with an error"
    if is_connection_failure(message):
        return BackendUnavailableError(f"{operation}: {message}")
    if "(NotFound)" in message or "not found" in message.lower():
        return NotFoundError(f"{operation}: {message}")
    if "(AlreadyExists)" in message or "already exists" in message.lower():
        return ConflictError(ConflictReason.ALREADY_EXISTS, f"{operation}: {message}")
    return ClusterCommandError(f"{operation}: {message}")


class KubectlClient:
    """ClusterClient implementation backed by the kubectl CLI."""

    def __init__(
        self,
        kubectl_path: str = "kubectl",
        context: str | None = None,
        kubeconfig: str | None = None,
        timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
    ):
        """Initialize kubectl client.

        Args:
            kubectl_path: kubectl (or oc) binary
            context: kubeconfig context to use (optional)
            kubeconfig: kubeconfig file path (optional)
            timeout: Per-call timeout in seconds
            retry_config: Retry settings (default: from environment)
        """
        self.kubectl_path = kubectl_path
        self.context = context
        self.kubeconfig = kubeconfig
        self.timeout = timeout
        self.retry_config = retry_config or get_retry_config()

    def _base_cmd(self) -> list[str]:
        cmd = [self.kubectl_path]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    def _run(
        self,
        args: list[str],
        operation: str,
        ctx: CallContext | None = None,
        input_data: str | None = None,
        retry: bool = True,
    ) -> str:
        """Run one kubectl command and return stdout.

        Non-idempotent commands pass retry=False: a create, replace or delete
        that timed out may already have been applied.

        Raises:
            BackendUnavailableError: On timeout, connection failure, or missing kubectl
            NotFoundError, ConflictError, ClusterCommandError: On classified rejections
        """
        cmd = self._base_cmd() + args
        config = self.retry_config

        @retry_with_exponential_backoff(
            max_attempts=config.max_attempts if retry else 1,
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            jitter=config.jitter_enabled,
            retryable_exceptions=(subprocess.TimeoutExpired, _TransientCommandError),
        )
        def _attempt() -> subprocess.CompletedProcess[str]:
            check_context(ctx, operation)
            timeout = ctx.bounded_timeout(self.timeout) if ctx else self.timeout
            try:
                return subprocess.run(
                    cmd,
                    input=input_data,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    check=True,
                )
            except subprocess.CalledProcessError as e:
                if is_connection_failure(e.stderr):
                    raise _TransientCommandError(e.stderr.strip()) from e
                raise

        logger.debug(f"Running kubectl: {' '.join(args[:4])}")

        try:
            return _attempt().stdout
        except subprocess.TimeoutExpired as e:
            raise BackendUnavailableError(f"{operation} timed out after {e.timeout}s") from e
        except FileNotFoundError as e:
            raise BackendUnavailableError(f"kubectl not found: {self.kubectl_path}") from e
        except _TransientCommandError as e:
            raise BackendUnavailableError(f"{operation}: {safe_error_message(e)}") from e
        except subprocess.CalledProcessError as e:
            raise classify_failure(operation, e.stderr) from e

    @staticmethod
    def _parse(stdout: str, operation: str) -> dict[str, Any]:
        if not stdout or not stdout.strip():
            return {}
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ClusterCommandError(f"{operation}: failed to parse kubectl output") from e
        if not isinstance(data, dict):
            raise ClusterCommandError(f"{operation}: unexpected kubectl output")
        return data

    def get(
        self, ref: ResourceRef, name: str, namespace: str, ctx: CallContext | None = None
    ) -> dict[str, Any]:
        operation = f"get {ref.resource}/{name}"
        stdout = self._run(
            ["get", ref.kubectl_name, name, "-n", namespace, "-o", "json"], operation, ctx
        )
        return self._parse(stdout, operation)

    def list_objects(
        self,
        ref: ResourceRef,
        namespace: str,
        labels: dict[str, str] | None = None,
        ctx: CallContext | None = None,
    ) -> list[dict[str, Any]]:
        operation = f"list {ref.resource}"
        args = ["get", ref.kubectl_name, "-n", namespace, "-o", "json"]
        if labels:
            args.extend(["-l", ",".join(f"{k}={v}" for k, v in sorted(labels.items()))])

        data = self._parse(self._run(args, operation, ctx), operation)
        items = data.get("items") or []
        return [item for item in items if isinstance(item, dict)]

    def create(
        self, ref: ResourceRef, obj: dict[str, Any], namespace: str, ctx: CallContext | None = None
    ) -> dict[str, Any]:
        name = obj.get("metadata", {}).get("name", "")
        operation = f"create {ref.resource}/{name}"
        stdout = self._run(
            ["create", "-f", "-", "-n", namespace, "-o", "json"],
            operation,
            ctx,
            input_data=json.dumps(obj),
            retry=False,
        )
        return self._parse(stdout, operation)

    def replace(
        self, ref: ResourceRef, obj: dict[str, Any], namespace: str, ctx: CallContext | None = None
    ) -> dict[str, Any]:
        name = obj.get("metadata", {}).get("name", "")
        operation = f"replace {ref.resource}/{name}"
        stdout = self._run(
            ["replace", "-f", "-", "-n", namespace, "-o", "json"],
            operation,
            ctx,
            input_data=json.dumps(obj),
            retry=False,
        )
        return self._parse(stdout, operation)

    def patch(
        self,
        ref: ResourceRef,
        name: str,
        namespace: str,
        patch: dict[str, Any],
        ctx: CallContext | None = None,
    ) -> dict[str, Any]:
        operation = f"patch {ref.resource}/{name}"
        stdout = self._run(
            [
                "patch",
                ref.kubectl_name,
                name,
                "-n",
                namespace,
                "--type",
                "merge",
                "-p",
                json.dumps(patch),
                "-o",
                "json",
            ],
            operation,
            ctx,
        )
        return self._parse(stdout, operation)

    def delete(
        self, ref: ResourceRef, name: str, namespace: str, ctx: CallContext | None = None
    ) -> None:
        self._run(
            ["delete", ref.kubectl_name, name, "-n", namespace, "--wait=false"],
            f"delete {ref.resource}/{name}",
            ctx,
            retry=False,
        )

    def ping(self, ref: ResourceRef, ctx: CallContext | None = None) -> None:
        try:
            self._run(["get", "--raw", ref.api_path], f"discover {ref.api_path}", ctx)
        except BackendUnavailableError:
            raise
        except ProvisioningError as e:
            raise BackendUnavailableError(f"API {ref.api_path} unavailable: {e}") from e


__all__ = [
    "LIMIT_RANGES",
    "RESOURCE_QUOTAS",
    "TEMPLATES",
    "VIRTUAL_MACHINES",
    "VIRTUAL_MACHINE_INSTANCES",
    "ClusterClient",
    "KubectlClient",
    "ResourceRef",
    "classify_failure",
    "is_connection_failure",
]
