"""Unit tests for retry_handler and retry_config modules."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from vdcctl.retry_config import RetryConfig, get_retry_config, reset_retry_config
from vdcctl.retry_handler import retry_with_exponential_backoff, safe_error_message


class TestRetryWithExponentialBackoff:
    """Tests for the retry decorator."""

    @patch("vdcctl.retry_handler.time.sleep")
    def test_success_first_attempt(self, mock_sleep):
        """Test no retry happens on success."""
        func = Mock(return_value="ok", __name__="func")
        decorated = retry_with_exponential_backoff()(func)

        assert decorated() == "ok"
        assert func.call_count == 1
        mock_sleep.assert_not_called()

    @patch("vdcctl.retry_handler.time.sleep")
    def test_retries_then_succeeds(self, mock_sleep):
        """Test transient failures are retried with doubling delays."""
        func = Mock(side_effect=[TimeoutError("t1"), TimeoutError("t2"), "ok"], __name__="func")
        decorated = retry_with_exponential_backoff(max_attempts=3, initial_delay=1.0, jitter=False)(
            func
        )

        assert decorated() == "ok"
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @patch("vdcctl.retry_handler.time.sleep")
    def test_delay_capped(self, mock_sleep):
        """Test delays never exceed max_delay."""
        func = Mock(side_effect=[TimeoutError()] * 3 + ["ok"], __name__="func")
        decorated = retry_with_exponential_backoff(
            max_attempts=4, initial_delay=10.0, max_delay=12.0, jitter=False
        )(func)

        decorated()
        assert [c.args[0] for c in mock_sleep.call_args_list] == [10.0, 12.0, 12.0]

    @patch("vdcctl.retry_handler.time.sleep")
    def test_exhausted_reraises(self, mock_sleep):
        """Test the last exception propagates after max attempts."""
        func = Mock(side_effect=subprocess.TimeoutExpired("kubectl", 5), __name__="func")
        decorated = retry_with_exponential_backoff(max_attempts=2)(func)

        with pytest.raises(subprocess.TimeoutExpired):
            decorated()
        assert func.call_count == 2

    @patch("vdcctl.retry_handler.time.sleep")
    def test_non_retryable_propagates(self, mock_sleep):
        """Test other exceptions are not retried."""
        func = Mock(side_effect=ValueError("bad"), __name__="func")
        decorated = retry_with_exponential_backoff(max_attempts=3)(func)

        with pytest.raises(ValueError):
            decorated()
        assert func.call_count == 1

    @patch("vdcctl.retry_handler.time.sleep")
    def test_jitter_bounds(self, mock_sleep):
        """Test jitter stays within 25% of the delay."""
        func = Mock(side_effect=[ConnectionError(), "ok"], __name__="func")
        retry_with_exponential_backoff(initial_delay=4.0, max_delay=100.0)(func)()

        delay = mock_sleep.call_args[0][0]
        assert 3.0 <= delay <= 5.0


class TestSafeErrorMessage:
    """Tests for safe_error_message."""

    def test_masks_credentials(self):
        """Test anything after a credential marker is masked."""
        message = safe_error_message(Exception("auth failed: Bearer abc123.def"))
        assert "abc123" not in message
        assert message.endswith("***")

    def test_truncates(self):
        """Test long messages are truncated."""
        message = safe_error_message(Exception("x" * 500))
        assert len(message) == 203

    def test_plain_message(self):
        """Test ordinary messages pass through."""
        assert safe_error_message(Exception("connection refused")) == "connection refused"


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self, monkeypatch):
        """Test defaults when no environment is set."""
        for key in (
            "VDCCTL_RETRY_MAX_ATTEMPTS",
            "VDCCTL_RETRY_INITIAL_DELAY",
            "VDCCTL_RETRY_MAX_DELAY",
            "VDCCTL_RETRY_JITTER_ENABLED",
        ):
            monkeypatch.delenv(key, raising=False)

        config = RetryConfig.from_environment()
        assert config.max_attempts == 3
        assert config.initial_delay == 1.0
        assert config.max_delay == 15.0
        assert config.jitter_enabled is True

    def test_from_environment(self, monkeypatch):
        """Test environment overrides."""
        monkeypatch.setenv("VDCCTL_RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("VDCCTL_RETRY_MAX_DELAY", "2.5")
        monkeypatch.setenv("VDCCTL_RETRY_JITTER_ENABLED", "FALSE")

        config = RetryConfig.from_environment()
        assert config.max_attempts == 5
        assert config.max_delay == 2.5
        assert config.jitter_enabled is False

    def test_attempts_at_least_one(self, monkeypatch):
        """Test zero attempts is raised to one."""
        monkeypatch.setenv("VDCCTL_RETRY_MAX_ATTEMPTS", "0")
        assert RetryConfig.from_environment().max_attempts == 1

    def test_cached_until_reset(self, monkeypatch):
        """Test the process-wide config is cached until reset."""
        reset_retry_config()
        first = get_retry_config()
        monkeypatch.setenv("VDCCTL_RETRY_MAX_ATTEMPTS", "7")
        assert get_retry_config() is first

        reset_retry_config()
        assert get_retry_config().max_attempts == 7
