"""
Home Assistant sensor registration.

Every sensor is announced with a retained discovery message before any
state is published for it. State publishes for sensors that were never
announced are refused.
"""

import json
import logging
from typing import FrozenSet, Iterable, Set

from ..core.config import DriveConfig
from ..core.errors import PublishError, RegistrationError
from ..core.models import FIXED_SENSORS, SensorDefinition, drive_sensor
from .mqtt_broker import BrokerSession

logger = logging.getLogger(__name__)

DISCOVERY_PREFIX = "homeassistant"
STATE_PREFIX = "system-mqtt"


class SensorRegistry:
    """Publishes discovery descriptors and routes state publishes."""

    def __init__(self, session: BrokerSession, hostname: str):
        self.session = session
        self.hostname = hostname
        self._registered: Set[str] = set()

    @property
    def registered(self) -> FrozenSet[str]:
        """Names of sensors whose discovery descriptor was published."""
        return frozenset(self._registered)

    def state_topic(self, name: str) -> str:
        return f"{STATE_PREFIX}/{self.hostname}/{name}"

    def discovery_topic(self, definition: SensorDefinition) -> str:
        return (
            f"{DISCOVERY_PREFIX}/{definition.topic_class}/"
            f"{STATE_PREFIX}-{self.hostname}/{definition.name}/config"
        )

    def discovery_payload(self, definition: SensorDefinition) -> str:
        """JSON discovery descriptor; optional fields are left out when unset."""
        payload = {"name": f"{self.hostname}-{definition.name}"}
        if definition.device_class:
            payload["device_class"] = definition.device_class
        if definition.state_class:
            payload["state_class"] = definition.state_class
        payload["state_topic"] = self.state_topic(definition.name)
        if definition.unit:
            payload["unit_of_measurement"] = definition.unit
        if definition.icon:
            payload["icon"] = definition.icon
        return json.dumps(payload)

    async def register(self, definition: SensorDefinition):
        """Publish the retained discovery descriptor for one sensor."""
        logger.info(f"Registering topic `{definition.name}`.")
        try:
            await self.session.publish(
                self.discovery_topic(definition),
                self.discovery_payload(definition),
                retain=True,
            )
        except PublishError as e:
            raise RegistrationError(f"Failed to register topic `{definition.name}`: {e}") from e
        self._registered.add(definition.name)

    async def register_all(self, drives: Iterable[DriveConfig]):
        """Register the fixed sensors, then one sensor per drive."""
        for definition in FIXED_SENSORS:
            await self.register(definition)
        for drive in drives:
            await self.register(drive_sensor(drive.name))

    async def publish(self, name: str, value: str) -> bool:
        """
        Publish a state value for a registered sensor.

        Returns False if the sensor is unknown or the publish failed; both
        are logged and neither is raised.
        """
        if name not in self._registered:
            logger.error(
                f"Attempt to publish topic `{name}`, which was never registered "
                f"with Home Assistant."
            )
            return False

        try:
            await self.session.publish(self.state_topic(name), value, retain=False)
        except PublishError as e:
            logger.error(f"Failed to publish topic `{name}`: {e}")
            return False
        return True
