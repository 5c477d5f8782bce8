"""Retry settings for control-plane calls.

Defaults work out of the box; every value can be overridden through
VDCCTL_RETRY_* environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Retry configuration for kubectl round-trips."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 15.0
    jitter_enabled: bool = True

    @classmethod
    def from_environment(cls) -> "RetryConfig":
        """Load retry configuration from environment variables.

        Environment variables (all optional):
            VDCCTL_RETRY_MAX_ATTEMPTS: Attempts per call (default: 3)
            VDCCTL_RETRY_INITIAL_DELAY: First backoff delay in seconds (default: 1.0)
            VDCCTL_RETRY_MAX_DELAY: Backoff cap in seconds (default: 15.0)
            VDCCTL_RETRY_JITTER_ENABLED: Randomize delays (default: true)

        Returns:
            RetryConfig with values from environment or defaults
        """
        return cls(
            max_attempts=max(1, int(os.getenv("VDCCTL_RETRY_MAX_ATTEMPTS", "3"))),
            initial_delay=float(os.getenv("VDCCTL_RETRY_INITIAL_DELAY", "1.0")),
            max_delay=float(os.getenv("VDCCTL_RETRY_MAX_DELAY", "15.0")),
            jitter_enabled=os.getenv("VDCCTL_RETRY_JITTER_ENABLED", "true").lower() == "true",
        )


_config: RetryConfig | None = None


def get_retry_config() -> RetryConfig:
    """Get the process-wide retry configuration, loading it on first access."""
    global _config
    if _config is None:
        _config = RetryConfig.from_environment()
    return _config


def reset_retry_config() -> None:
    """Force a reload from the environment on next access."""
    global _config
    _config = None


__all__ = ["RetryConfig", "get_retry_config", "reset_retry_config"]
