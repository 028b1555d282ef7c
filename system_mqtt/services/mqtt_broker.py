import logging
import asyncio
from enum import Enum
from typing import Callable, Optional
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from ..core.credentials import BrokerCredentials
from ..core.errors import BrokerConnectionError, PublishError

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883}
TLS_SCHEMES = ("mqtts", "ssl")
KEEPALIVE_SECONDS = 60


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    DRAINING = "draining"


def default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


class BrokerSession:
    """
    Connection to the MQTT broker.

    paho runs its network loop in a background thread; connect and
    disconnect hand their blocking parts to a worker thread so the event
    loop keeps running. A dropped connection is not re-established.
    """

    def __init__(
        self,
        url: str,
        credentials: Optional[BrokerCredentials] = None,
        client_id: str = "",
        client_factory: Callable[[str], mqtt.Client] = default_client_factory,
    ):
        parts = urlsplit(url)
        if parts.scheme not in DEFAULT_PORTS or not parts.hostname:
            raise BrokerConnectionError(f"Unsupported MQTT server URL: {url}")

        self.host = parts.hostname
        self.port = parts.port or DEFAULT_PORTS[parts.scheme]
        self.use_tls = parts.scheme in TLS_SCHEMES
        if credentials is None and parts.username:
            credentials = BrokerCredentials(parts.username, parts.password or "")

        self._credentials = credentials
        self._client_id = client_id
        self._client_factory = client_factory
        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connack: Optional[asyncio.Future] = None
        self.state = SessionState.DISCONNECTED

    @property
    def broker_address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    async def connect(self):
        """Connect and wait for the broker to acknowledge."""
        if self.state is not SessionState.DISCONNECTED:
            raise BrokerConnectionError(f"Session is already {self.state.value}")

        self._loop = asyncio.get_running_loop()
        self._connack = self._loop.create_future()

        client = self._client_factory(self._client_id)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect

        try:
            if self._credentials is not None:
                client.username_pw_set(self._credentials.username, self._credentials.password)
            if self.use_tls:
                client.tls_set()

            await asyncio.to_thread(client.connect, self.host, self.port, KEEPALIVE_SECONDS)
            client.loop_start()
            try:
                await self._connack
            except BaseException:
                await asyncio.to_thread(client.loop_stop)
                raise
        except BrokerConnectionError:
            raise
        except Exception as e:
            raise BrokerConnectionError(
                f"Failed to connect to MQTT server at {self.broker_address}: {e}"
            ) from e
        finally:
            # The password is only needed for the handshake
            self._credentials = None

        self._client = client
        self.state = SessionState.CONNECTED
        logger.info(f"Connected to MQTT Broker at {self.broker_address}")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            error = BrokerConnectionError(
                f"MQTT server at {self.broker_address} refused the connection: {reason_code}"
            )
            self._resolve_connack(error)
        else:
            self._resolve_connack(None)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if self._loop is None:
            return
        if self._client is client:
            # No automatic reconnect: stop paho's network thread.
            client.loop_stop()
        self._loop.call_soon_threadsafe(self._connection_closed, client, reason_code)

    def _connection_closed(self, client, reason_code):
        """Runs on the event loop; the only place a lost connection changes state."""
        if self.state is SessionState.CONNECTED and self._client is client:
            logger.error(f"Lost connection to MQTT Broker at {self.broker_address}: {reason_code}")
            self.state = SessionState.DISCONNECTED
        elif self.state is SessionState.DISCONNECTED:
            self._resolve_connack(
                BrokerConnectionError(
                    f"MQTT server at {self.broker_address} closed the connection: {reason_code}"
                )
            )

    def _resolve_connack(self, error: Optional[Exception]):
        future = self._connack
        if future is None or self._loop is None:
            return

        def resolve():
            if future.done():
                return
            if error is None:
                future.set_result(None)
            else:
                future.set_exception(error)

        self._loop.call_soon_threadsafe(resolve)

    async def publish(self, topic: str, payload: str, retain: bool = False):
        """Publish a message to an MQTT topic."""
        if self.state is not SessionState.CONNECTED or self._client is None:
            raise PublishError(f"Cannot publish to {topic}: not connected")

        try:
            info = self._client.publish(topic, payload, qos=0, retain=retain)
        except Exception as e:
            raise PublishError(f"Failed to publish to {topic}: {e}") from e

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(f"Failed to publish to {topic}: {mqtt.error_string(info.rc)}")

    async def disconnect(self):
        """Disconnect from the broker. Safe to call more than once."""
        client = self._client
        if client is None:
            self.state = SessionState.DISCONNECTED
            return

        was_connected = self.state is SessionState.CONNECTED
        self.state = SessionState.DRAINING
        self._client = None
        try:
            rc = client.disconnect() if was_connected else mqtt.MQTT_ERR_SUCCESS
            await asyncio.to_thread(client.loop_stop)
        except Exception as e:
            raise BrokerConnectionError(f"Error while disconnecting from MQTT server: {e}") from e
        finally:
            self.state = SessionState.DISCONNECTED

        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerConnectionError(
                f"Error while disconnecting from MQTT server: {mqtt.error_string(rc)}"
            )
        logger.info("MQTT Client stopped")

    async def __aenter__(self) -> "BrokerSession":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            await self.disconnect()
        except BrokerConnectionError as e:
            if exc is None:
                raise
            # Keep the original error; only report this one.
            logger.error(f"{e}")
        return False
