"""Per-call deadline and cancellation.

Callers bound each driver or enforcer call with a CallContext. Operations
check the context before applying any change, so a cancelled or expired call
has no effect.

Usage:
    ctx = CallContext(timeout=10)
    driver.start_vm("vm-1", "tenant-a", ctx=ctx)

    # From another thread
    ctx.cancel()
"""

import threading
import time
from dataclasses import dataclass, field

from vdcctl.errors import BackendUnavailableError, OperationCancelledError


@dataclass
class CallContext:
    """Deadline and cancellation flag for one logical operation.

    Attributes:
        timeout: Seconds allowed from construction (None = no deadline)
    """

    timeout: float | None = None
    _cancelled: threading.Event = field(default_factory=threading.Event, repr=False)
    _started: float = field(default_factory=lambda: time.monotonic(), repr=False)

    def cancel(self) -> None:
        """Cancel the operation."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancel() was called."""
        return self._cancelled.is_set()

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None without a deadline."""
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - (time.monotonic() - self._started))

    def expired(self) -> bool:
        """Whether the deadline has passed."""
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, operation: str) -> None:
        """Raise if the operation must not proceed.

        Raises:
            OperationCancelledError: If the context was cancelled
            BackendUnavailableError: If the deadline has passed
        """
        if self.cancelled:
            raise OperationCancelledError(f"{operation} cancelled by caller")
        if self.expired():
            raise BackendUnavailableError(f"{operation} timed out after {self.timeout}s")

    def bounded_timeout(self, default: float) -> float:
        """Timeout for one backend round-trip, capped by the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)


def check_context(ctx: CallContext | None, operation: str) -> None:
    """Check an optional context."""
    if ctx is not None:
        ctx.check(operation)


__all__ = ["CallContext", "check_context"]
