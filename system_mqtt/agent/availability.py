"""
Availability announcements.

The availability topic is retained, so Home Assistant shows the host as
offline as soon as the agent stops, whatever made it stop.
"""

import logging
from typing import Awaitable, Callable, Optional

from ..core.errors import PublishError, SystemMqttError
from ..core.models import AVAILABILITY
from ..services.mqtt_broker import BrokerSession
from ..services.sensor_registry import STATE_PREFIX
from .poll_loop import PollLoop


logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


class AvailabilityManager:
    """Brackets a run with retained online/offline messages."""

    def __init__(self, session: BrokerSession, topic: str):
        self.session = session
        self.topic = topic
        self._closed = False

    @classmethod
    def for_host(cls, session: BrokerSession, hostname: str) -> "AvailabilityManager":
        return cls(session, f"{STATE_PREFIX}/{hostname}/{AVAILABILITY}")

    async def announce_online(self):
        try:
            await self.session.publish(self.topic, ONLINE, retain=True)
        except PublishError as e:
            raise PublishError(f"Failed to publish availability topic: {e}") from e
        logger.info("Announced availability: online")

    async def announce_offline(self) -> bool:
        try:
            await self.session.publish(self.topic, OFFLINE, retain=True)
        except PublishError as e:
            logger.error(f"Error while disconnecting from home assistant: {e}")
            return False
        logger.info("Announced availability: offline")
        return True

    async def close(self):
        """Announce offline, then disconnect. Runs once; never raises."""
        if self._closed:
            return
        self._closed = True

        await self.announce_offline()
        try:
            await self.session.disconnect()
        except SystemMqttError as e:
            logger.error(f"{e}")

    async def run(
        self,
        poll_loop: PollLoop,
        startup: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """
        Run `startup` (sensor registration), go online and run the loop.

        Offline and disconnect are attempted however this ends; an error
        from the body is re-raised unchanged.
        """
        try:
            if startup is not None:
                await startup()
            await self.announce_online()
            await poll_loop.run()
        finally:
            await self.close()
