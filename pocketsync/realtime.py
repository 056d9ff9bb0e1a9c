"""MQTT change feed delivering record events to synchronizers."""

import asyncio
import json
import logging
from typing import Any

import paho.mqtt.client as mqtt

from .config import RealtimeConfig
from .errors import ClientResponseError
from .sync.events import WILDCARD_TOPIC, ChangeEvent
from .sync.service import EventHandler, Unsubscribe

logger = logging.getLogger(__name__)


class MQTTChangeFeed:
    """Subscribe-by-topic primitive over an MQTT broker.

    The backend publishes each change as JSON ({"action", "record"}) to
    "{prefix}/{collection}/{record_id}". Handlers run on the asyncio loop
    that called connect(), never on the paho network thread.
    """

    def __init__(self, config: RealtimeConfig):
        self.config = config

        # Handlers keyed by broker topic filter
        self._handlers: dict[str, list[EventHandler]] = {}

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None

    def topic_filter(self, collection: str, topic: str) -> str:
        """Map a (collection, "*" | record id) pair to a broker filter."""
        segment = "+" if topic == WILDCARD_TOPIC else topic
        return f"{self.config.topic_prefix}/{collection}/{segment}"

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")

            # Handlers are owned by the loop thread; restore filters there
            if self._loop is not None:
                self._loop.call_soon_threadsafe(self._restore_filters)
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _restore_filters(self) -> None:
        """Re-subscribe every registered filter after a reconnect."""
        for topic_filter in list(self._handlers):
            result, _ = self._client.subscribe(topic_filter)
            if result != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Failed to restore subscription to {topic_filter} (rc={result})")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Handle incoming message on the paho thread."""
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Dropping non UTF-8 message on {msg.topic}")
            return

        if self._loop:
            self._loop.call_soon_threadsafe(self._dispatch, msg.topic, payload)

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    def _dispatch(self, topic: str, payload: str) -> None:
        """Parse a message and hand it to every matching handler."""
        try:
            event = ChangeEvent.from_dict(json.loads(payload))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Dropping malformed change event on {topic}: {e}")
            return

        logger.debug(f"Received {event.action.value} on {topic}")

        for topic_filter, handlers in list(self._handlers.items()):
            if not mqtt.topic_matches_sub(topic_filter, topic):
                continue
            for handler in list(handlers):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(f"Change handler failed on {topic}: {e}", exc_info=True)

    async def connect(self) -> bool:
        """Connect to the MQTT broker.

        Returns:
            True if connection successful.
        """
        self._loop = asyncio.get_running_loop()

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()

            # Wait for connection
            for _ in range(50):  # 5 second timeout
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("Timeout waiting for MQTT connection")
            return False

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    async def disconnect(self) -> None:
        """Disconnect from the broker and drop every handler."""
        self._handlers.clear()
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    async def subscribe(
        self,
        collection: str,
        topic: str,
        handler: EventHandler,
    ) -> Unsubscribe:
        """Register a handler for a collection topic.

        Raises:
            ClientResponseError: status 0 when the broker is unavailable.
        """
        if not self._connected:
            raise ClientResponseError(0, "Realtime feed is not connected")

        topic_filter = self.topic_filter(collection, topic)

        if topic_filter not in self._handlers:
            result, _ = self._client.subscribe(topic_filter)
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise ClientResponseError(
                    0, f"Broker refused subscription to {topic_filter} (rc={result})"
                )
            self._handlers[topic_filter] = []
            logger.info(f"Subscribed to topic: {topic_filter}")

        self._handlers[topic_filter].append(handler)

        released = False

        def unsubscribe() -> None:
            nonlocal released
            if released:
                return
            released = True
            self._remove_handler(topic_filter, handler)

        return unsubscribe

    def _remove_handler(self, topic_filter: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(topic_filter)
        if handlers is None:
            return

        if handler in handlers:
            handlers.remove(handler)

        if not handlers:
            del self._handlers[topic_filter]
            if self._connected:
                self._client.unsubscribe(topic_filter)
            logger.info(f"Unsubscribed from topic: {topic_filter}")

    def handler_count(self, collection: str, topic: str) -> int:
        return len(self._handlers.get(self.topic_filter(collection, topic), []))

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected

    async def check_connection(self) -> bool:
        """Check if broker is reachable."""
        if self._connected:
            return True

        # Try a quick connection test
        try:
            test_client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            test_client.connect(self.config.broker, self.config.port, keepalive=5)
            test_client.disconnect()
            return True
        except Exception:
            return False
