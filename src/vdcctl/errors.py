"""Error kinds raised by the provisioning core.

Every driver, enforcer, and builder operation raises one of these to its
caller. Nothing in the core logs-and-continues on these errors.

Hierarchy:
    ProvisioningError
    ├── NotFoundError
    ├── ConflictError            (carries a ConflictReason)
    ├── ResourceExceededError    (carries the violated dimension)
    ├── LimitRangeViolationError (carries the violated dimension)
    ├── BackendUnavailableError
    │   └── OperationCancelledError
    ├── MaterializationError
    ├── MalformedObjectError
    └── ClusterCommandError
"""

from enum import Enum


class ProvisioningError(Exception):
    """Base exception for all provisioning core errors."""

    pass


class NotFoundError(ProvisioningError):
    """Unknown (namespace, id) pair or missing cluster object."""

    pass


class ConflictReason(str, Enum):
    """Why a request conflicts with the current VM state."""

    ALREADY_EXISTS = "AlreadyExists"
    ALREADY_RUNNING = "AlreadyRunning"
    ALREADY_STOPPED = "AlreadyStopped"
    NOT_RUNNING = "NotRunning"
    NO_IP_ASSIGNED = "NoIPAssigned"


class ConflictError(ProvisioningError):
    """Duplicate create or invalid state transition."""

    def __init__(self, reason: ConflictReason, message: str):
        super().__init__(message)
        self.reason = reason


class ResourceDimension(str, Enum):
    """Quota dimensions a VM request can exceed."""

    CPU = "CPU"
    MEMORY = "Memory"
    STORAGE = "Storage"


class ResourceExceededError(ProvisioningError):
    """A VM request exceeds a VDC quota ceiling."""

    def __init__(self, dimension: ResourceDimension, requested: float, limit: float, unit: str):
        self.dimension = dimension
        self.requested = requested
        self.limit = limit
        super().__init__(
            f"{dimension.value} request of {requested:g}{unit} exceeds VDC limit of {limit:g}{unit}"
        )


class LimitRangeViolationError(ProvisioningError):
    """A VM request falls outside the per-VM bounds of a namespace."""

    def __init__(self, dimension: ResourceDimension, message: str):
        super().__init__(message)
        self.dimension = dimension


class BackendUnavailableError(ProvisioningError):
    """Control plane unreachable, timed out, or the call deadline passed."""

    pass


class OperationCancelledError(BackendUnavailableError):
    """The caller cancelled the operation before it was applied."""

    pass


class MaterializationError(ProvisioningError):
    """Template could not be turned into cluster objects, or submission failed."""

    pass


class MalformedObjectError(ProvisioningError):
    """A cluster document is structurally malformed (not a mapping)."""

    pass


class ClusterCommandError(ProvisioningError):
    """The control plane rejected a request for a reason we do not classify."""

    pass


__all__ = [
    "BackendUnavailableError",
    "ClusterCommandError",
    "ConflictError",
    "ConflictReason",
    "LimitRangeViolationError",
    "MalformedObjectError",
    "MaterializationError",
    "NotFoundError",
    "OperationCancelledError",
    "ProvisioningError",
    "ResourceDimension",
    "ResourceExceededError",
]
