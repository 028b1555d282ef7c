"""
Configuration management for system-mqtt.

Loads configuration from a YAML file and environment variables. A missing
file is written out with the defaults so the operator has something to edit.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union
import yaml

from .errors import ConfigError


DEFAULT_CONFIG_PATH = "/etc/system-mqtt.yaml"
DEFAULT_KEYRING_SERVICE = "system-mqtt"


@dataclass(frozen=True)
class KeyringSource:
    """Broker password is stored in the OS keyring."""


@dataclass(frozen=True)
class SecretFileSource:
    """Broker password is the content of a file only the current user can read."""

    path: str


PasswordSource = Union[KeyringSource, SecretFileSource]


@dataclass(frozen=True)
class DriveConfig:
    """A mounted filesystem to report, and the sensor name to report it as."""

    path: str
    name: str


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container."""

    mqtt_server: str = "mqtt://localhost"
    username: Optional[str] = None
    password_source: PasswordSource = field(default_factory=KeyringSource)
    keyring_service: str = DEFAULT_KEYRING_SERVICE
    update_interval: float = 30.0  # seconds
    drives: List[DriveConfig] = field(
        default_factory=lambda: [DriveConfig(path="/", name="root")]
    )
    restart_on_failure: bool = False
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """
        Load configuration from a YAML file.

        If the file does not exist yet, a default one is written to `path`.
        """
        config_path = Path(path)
        if not config_path.exists():
            config = cls()
            config.to_yaml(path)
            config._apply_env_overrides()
            return config

        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        config = cls()

        try:
            if "mqtt_server" in data:
                config.mqtt_server = str(data["mqtt_server"])

            if "username" in data:
                config.username = data["username"]

            if "password_source" in data:
                config.password_source = parse_password_source(data["password_source"])

            if "keyring_service" in data:
                config.keyring_service = str(data["keyring_service"])

            if "update_interval" in data:
                config.update_interval = parse_interval(data["update_interval"])

            if "drives" in data:
                config.drives = [
                    DriveConfig(path=str(d["path"]), name=str(d["name"]))
                    for d in data["drives"] or []
                ]

            if "restart_on_failure" in data:
                config.restart_on_failure = bool(data["restart_on_failure"])

            if "logging" in data:
                config.logging = LoggingConfig(**(data["logging"] or {}))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        # Override with environment variables
        config._apply_env_overrides()

        return config

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        if os.getenv("SYSTEM_MQTT_SERVER"):
            self.mqtt_server = os.getenv("SYSTEM_MQTT_SERVER")
        if os.getenv("SYSTEM_MQTT_USERNAME"):
            self.username = os.getenv("SYSTEM_MQTT_USERNAME")
        if os.getenv("SYSTEM_MQTT_UPDATE_INTERVAL"):
            try:
                self.update_interval = parse_interval(os.getenv("SYSTEM_MQTT_UPDATE_INTERVAL"))
            except ValueError as e:
                raise ConfigError(f"Invalid SYSTEM_MQTT_UPDATE_INTERVAL: {e}") from e

        # Logging
        if os.getenv("LOG_LEVEL"):
            self.logging.level = os.getenv("LOG_LEVEL")

    def to_dict(self) -> dict:
        """Convert configuration to the dictionary written to YAML."""
        if isinstance(self.password_source, SecretFileSource):
            password_source = {"SecretFile": self.password_source.path}
        else:
            password_source = "Keyring"

        return {
            "mqtt_server": self.mqtt_server,
            "username": self.username,
            "password_source": password_source,
            "keyring_service": self.keyring_service,
            "update_interval": self.update_interval,
            "drives": [{"path": d.path, "name": d.name} for d in self.drives],
            "restart_on_failure": self.restart_on_failure,
            "logging": {
                "level": self.logging.level,
                "file_path": self.logging.file_path,
            },
        }

    def to_yaml(self, path: str):
        """Save configuration to YAML file."""
        try:
            with open(path, "w") as f:
                yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Failed to write config file {path}: {e}") from e


def parse_password_source(value) -> PasswordSource:
    """
    Parse a password source.

    Accepts ``Keyring``, ``{SecretFile: <path>}`` and the spelled-out
    ``{type: secret_file, path: <path>}`` form.
    """
    if value is None or (isinstance(value, str) and value.lower() == "keyring"):
        return KeyringSource()

    if isinstance(value, dict):
        if "SecretFile" in value:
            return SecretFileSource(path=str(value["SecretFile"]))
        kind = str(value.get("type", "")).lower()
        if kind == "keyring":
            return KeyringSource()
        if kind in ("secret_file", "secretfile"):
            return SecretFileSource(path=str(value["path"]))

    raise ValueError(f"unknown password_source {value!r}")


def parse_interval(value) -> float:
    """Parse an update interval in seconds; also accepts ``{secs, nanos}``."""
    if isinstance(value, dict):
        seconds = float(value.get("secs", 0)) + float(value.get("nanos", 0)) / 1e9
    else:
        seconds = float(value)

    if seconds <= 0:
        raise ValueError(f"update interval must be positive, got {seconds}")
    return seconds


def get_default_config_path() -> str:
    """Get the default configuration file path."""
    if os.getenv("SYSTEM_MQTT_CONFIG"):
        return os.getenv("SYSTEM_MQTT_CONFIG")
    return DEFAULT_CONFIG_PATH
