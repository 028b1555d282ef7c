"""Broadcasts system statistics to an MQTT server for Home Assistant."""

__version__ = "0.3.0"
