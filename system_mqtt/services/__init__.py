"""Services talking to the MQTT broker."""

from .mqtt_broker import BrokerSession, SessionState
from .sensor_registry import SensorRegistry

__all__ = [
    "BrokerSession",
    "SessionState",
    "SensorRegistry",
]
