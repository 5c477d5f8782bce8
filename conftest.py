"""Pytest configuration and fixtures for vdcctl tests.

CRITICAL: Protects the user's configuration and cluster from test runs.
"""

import os
import shutil
from pathlib import Path

import pytest


@pytest.fixture(scope="session", autouse=True)
def protect_production_config():
    """Protect ~/.vdcctl/config.toml from being modified by tests.

    Backs up the real config before the session and restores it afterwards.
    """
    config_path = Path.home() / ".vdcctl" / "config.toml"
    backup_path = Path.home() / ".vdcctl" / ".config.toml.pytest-backup"

    config_existed = config_path.exists()
    if config_existed:
        shutil.copy2(config_path, backup_path)

    yield

    if config_existed and backup_path.exists():
        shutil.copy2(backup_path, config_path)
        backup_path.unlink()
    elif backup_path.exists():
        backup_path.unlink()


@pytest.fixture(autouse=True)
def clean_vdcctl_environment(monkeypatch):
    """Drop VDCCTL_* overrides from the developer's shell for every test."""
    for key in list(os.environ):
        if key.startswith("VDCCTL_"):
            monkeypatch.delenv(key, raising=False)

    from vdcctl.retry_config import reset_retry_config

    # Fast, deterministic retries unless a test opts back in
    monkeypatch.setenv("VDCCTL_RETRY_INITIAL_DELAY", "0")
    monkeypatch.setenv("VDCCTL_RETRY_JITTER_ENABLED", "false")
    reset_retry_config()
    yield
    reset_retry_config()


@pytest.fixture
def isolated_config(tmp_path):
    """Provide an isolated config directory.

    Example:
        def test_something(isolated_config):
            config_path = isolated_config / "config.toml"
    """
    config_dir = tmp_path / ".vdcctl"
    config_dir.mkdir(parents=True)
    return config_dir


@pytest.fixture
def mock_config_path(isolated_config, monkeypatch):
    """Point ConfigManager at the isolated config directory instead of ~/.vdcctl."""
    from vdcctl.config_manager import ConfigManager

    config_file = isolated_config / "config.toml"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", isolated_config)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_file)
    return config_file
