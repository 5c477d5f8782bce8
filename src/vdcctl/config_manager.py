"""Configuration management module.

Persistent settings are stored as TOML at ~/.vdcctl/config.toml. Any value
can be overridden per process with a VDCCTL_* environment variable:

    VDCCTL_DRIVER               cluster | simulated
    VDCCTL_KUBECTL_PATH         kubectl (or oc) binary
    VDCCTL_KUBE_CONTEXT         kubeconfig context
    VDCCTL_KUBECONFIG           kubeconfig file
    VDCCTL_TEMPLATE_NAMESPACE   namespace holding cluster templates
    VDCCTL_TEMPLATES_DIR        local directory of YAML templates
    VDCCTL_LABEL_DOMAIN         prefix for ownership labels
    VDCCTL_REQUEST_TIMEOUT      per-call timeout in seconds

Security:
- Config file permissions: 0600 (owner read/write only)
- Atomic writes through a temporary file
"""

import logging
import os
import tomllib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import tomlkit

logger = logging.getLogger(__name__)

DRIVER_CLUSTER = "cluster"
DRIVER_SIMULATED = "simulated"
VALID_DRIVERS = (DRIVER_CLUSTER, DRIVER_SIMULATED)

ENV_PREFIX = "VDCCTL_"


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class VdcctlConfig:
    """vdcctl configuration data."""

    driver: str = DRIVER_CLUSTER
    kubectl_path: str = "kubectl"
    kube_context: str | None = None
    kubeconfig: str | None = None
    template_namespace: str = "openshift"
    templates_dir: str | None = None
    label_domain: str = "vdcctl.io"
    request_timeout: float = 30.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VdcctlConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

        config = cls(**{k: v for k, v in data.items() if k in known})
        config.validate()
        return config

    def validate(self) -> None:
        """Check field values.

        Raises:
            ConfigError: If a value is invalid
        """
        if self.driver not in VALID_DRIVERS:
            raise ConfigError(
                f"Invalid driver '{self.driver}'. Expected one of: {', '.join(VALID_DRIVERS)}"
            )
        try:
            self.request_timeout = float(self.request_timeout)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid request_timeout: {self.request_timeout!r}") from e
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")

    def apply_environment(self, environ: dict[str, str] | None = None) -> "VdcctlConfig":
        """Overlay VDCCTL_* environment variables onto this config."""
        environ = os.environ if environ is None else environ
        for f in fields(self):
            value = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if value:
                setattr(self, f.name, value)
        self.validate()
        return self


class ConfigManager:
    """Manage the vdcctl configuration file.

    Configuration is stored at ~/.vdcctl/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".vdcctl"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If a custom path was given and does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> VdcctlConfig:
        """Load configuration from file. A missing default file yields defaults.

        Raises:
            ConfigError: If the file cannot be read or holds invalid values
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return VdcctlConfig()

        mode = config_path.stat().st_mode & 0o777
        if mode & 0o077:
            logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
            os.chmod(config_path, 0o600)

        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return VdcctlConfig.from_dict(data)

    @classmethod
    def get_config(cls, custom_path: str | None = None) -> VdcctlConfig:
        """Load configuration and apply environment overrides."""
        return cls.load_config(custom_path).apply_environment()

    @classmethod
    def save_config(cls, config: VdcctlConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file, preserving existing comments.

        Returns:
            Path the config was written to

        Raises:
            ConfigError: If saving fails
        """
        config.validate()
        if custom_path:
            config_path = Path(custom_path).expanduser().resolve()
        else:
            config_path = cls.DEFAULT_CONFIG_FILE

        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            if not custom_path:
                os.chmod(config_path.parent, 0o700)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key in [k for k in doc if hasattr(config, k) and getattr(config, k) is None]:
                del doc[key]
            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

        logger.debug(f"Saved config to: {config_path}")
        return config_path

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> VdcctlConfig:
        """Update configuration values and save.

        Raises:
            ConfigError: If a key is unknown or the update fails
        """
        config = cls.load_config(custom_path)
        for key, value in updates.items():
            if not hasattr(config, key):
                raise ConfigError(f"Unknown config key: {key}")
            setattr(config, key, value)

        cls.save_config(config, custom_path)
        return config


__all__ = [
    "DRIVER_CLUSTER",
    "DRIVER_SIMULATED",
    "ConfigError",
    "ConfigManager",
    "VdcctlConfig",
]
