"""
Exception hierarchy for system-mqtt.

Fatal errors (config, credentials, connection, registration) abort
startup; SampleError and PublishError are recoverable inside the poll loop.
"""

from enum import Enum


class SystemMqttError(Exception):
    """Base class for all system-mqtt errors."""


class ConfigError(SystemMqttError):
    """The configuration file could not be read, written or parsed."""


class CredentialReason(Enum):
    """Why a broker password could not be resolved."""

    NOT_SET = "not_set"
    BAD_PERMISSIONS = "bad_permissions"
    WRONG_OWNER = "wrong_owner"
    WRONG_GROUP = "wrong_group"
    UNREADABLE = "unreadable"


class CredentialError(SystemMqttError):
    """The broker password could not be obtained safely."""

    def __init__(self, reason: CredentialReason, message: str):
        super().__init__(message)
        self.reason = reason


class BrokerConnectionError(SystemMqttError):
    """Connecting to (or disconnecting from) the broker failed."""


class RegistrationError(SystemMqttError):
    """A discovery descriptor could not be published."""


class SampleError(SystemMqttError):
    """A single host metric could not be read this cycle."""


class PublishError(SystemMqttError):
    """A message could not be published to the broker."""
