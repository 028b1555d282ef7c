"""Core module containing data models, configuration and credentials."""

from .models import (
    SensorDefinition,
    CpuSampleState,
    BatterySample,
    CycleReport,
)
from .config import Config, DriveConfig, KeyringSource, SecretFileSource
from .credentials import BrokerCredentials, CredentialResolver

__all__ = [
    "SensorDefinition",
    "CpuSampleState",
    "BatterySample",
    "CycleReport",
    "Config",
    "DriveConfig",
    "KeyringSource",
    "SecretFileSource",
    "BrokerCredentials",
    "CredentialResolver",
]
