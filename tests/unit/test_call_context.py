"""Unit tests for call_context module."""

from unittest.mock import patch

import pytest

from vdcctl.call_context import CallContext, check_context
from vdcctl.errors import BackendUnavailableError, OperationCancelledError


class TestCallContext:
    """Tests for CallContext."""

    def test_no_deadline(self):
        """Test a context without timeout never expires."""
        ctx = CallContext()
        assert ctx.remaining() is None
        assert not ctx.expired()
        assert ctx.bounded_timeout(30.0) == 30.0
        ctx.check("start VM")

    def test_cancel(self):
        """Test cancellation is reported as OperationCancelledError."""
        ctx = CallContext(timeout=60)
        ctx.cancel()
        assert ctx.cancelled
        with pytest.raises(OperationCancelledError, match="start VM cancelled"):
            ctx.check("start VM")

    def test_cancelled_is_backend_unavailable(self):
        """Test callers handling unavailability also see cancellations."""
        assert issubclass(OperationCancelledError, BackendUnavailableError)

    def test_expired(self):
        """Test an exhausted deadline raises BackendUnavailableError."""
        ctx = CallContext(timeout=0)
        assert ctx.expired()
        with pytest.raises(BackendUnavailableError, match="timed out after 0s"):
            ctx.check("stop VM")

    @patch("vdcctl.call_context.time.monotonic")
    def test_bounded_timeout(self, mock_monotonic):
        """Test round-trip timeouts are capped by the remaining deadline."""
        mock_monotonic.return_value = 100.0
        ctx = CallContext(timeout=10)

        mock_monotonic.return_value = 104.0
        assert ctx.remaining() == 6.0
        assert ctx.bounded_timeout(30.0) == 6.0
        assert ctx.bounded_timeout(2.0) == 2.0


class TestCheckContext:
    """Tests for check_context."""

    def test_none(self):
        """Test a missing context is a no-op."""
        check_context(None, "delete VM")

    def test_delegates(self):
        """Test a cancelled context raises."""
        ctx = CallContext()
        ctx.cancel()
        with pytest.raises(OperationCancelledError):
            check_context(ctx, "delete VM")
