"""Async MQTT client wrapper using aiomqtt."""

from __future__ import annotations

import contextlib
import logging
from typing import Any, Callable, Coroutine

import aiomqtt

from solar_autopilot.config.schema import MQTTConfig
from solar_autopilot.hardware.base import TransportError

logger = logging.getLogger(__name__)

# Type alias for message callback: (topic, payload) -> None
MessageCallback = Callable[[str, str], Coroutine[Any, Any, None]]


class MQTTClient:
    """Async MQTT client wrapping aiomqtt.

    Keeps one broker connection open between connect() and disconnect() and
    doubles as the engine's CommandTransport.
    """

    def __init__(self, config: MQTTConfig) -> None:
        self._config = config
        self._client: aiomqtt.Client | None = None
        self._stack: contextlib.AsyncExitStack | None = None
        self._connected = False
        self._subscriptions: dict[str, MessageCallback] = {}

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect to the MQTT broker.

        Raises:
            TransportError: the broker is unreachable.
        """
        if self._connected:
            return
        client = aiomqtt.Client(
            hostname=self._config.broker_host,
            port=self._config.broker_port,
            username=self._config.username or None,
            password=self._config.password or None,
            identifier=self._config.client_id or None,
        )
        stack = contextlib.AsyncExitStack()
        logger.info("MQTT connecting to %s:%d", self._config.broker_host, self._config.broker_port)
        try:
            await stack.enter_async_context(client)
        except aiomqtt.MqttError as e:
            await stack.aclose()
            raise TransportError(f"MQTT connect failed: {e}") from e
        self._client = client
        self._stack = stack
        self._connected = True
        logger.info("MQTT connected")

    async def disconnect(self) -> None:
        """Disconnect from the broker."""
        self._connected = False
        stack, self._stack = self._stack, None
        self._client = None
        if stack is not None:
            try:
                await stack.aclose()
            except aiomqtt.MqttError as e:
                logger.warning("MQTT disconnect error: %s", e)

    async def publish(self, topic: str, payload: str, retain: bool = False) -> None:
        """Publish a message to a topic.

        Raises:
            TransportError: not connected, or the broker rejected the publish.
        """
        if not self._connected or self._client is None:
            raise TransportError(f"MQTT not connected, cannot publish to {topic}")
        try:
            await self._client.publish(topic, payload, retain=retain)
        except aiomqtt.MqttError as e:
            raise TransportError(f"MQTT publish failed for {topic}: {e}") from e

    def subscribe(self, topic: str, callback: MessageCallback) -> None:
        """Register a callback for a topic filter (wildcards allowed)."""
        self._subscriptions[topic] = callback

    async def listen(self) -> None:
        """Dispatch incoming messages to their callbacks until disconnected."""
        if not self._connected or self._client is None or not self._subscriptions:
            return

        try:
            for topic in self._subscriptions:
                await self._client.subscribe(topic)

            async for message in self._client.messages:
                topic = str(message.topic)
                try:
                    payload = (
                        message.payload.decode()
                        if isinstance(message.payload, (bytes, bytearray))
                        else str(message.payload)
                    )
                except UnicodeDecodeError:
                    logger.warning("Ignoring undecodable payload on %s", topic)
                    continue
                for pattern, callback in self._subscriptions.items():
                    if not message.topic.matches(pattern):
                        continue
                    try:
                        await callback(topic, payload)
                    except Exception:
                        logger.exception("MQTT callback error for %s", topic)
        except aiomqtt.MqttError as e:
            logger.error("MQTT listener error: %s", e)
            self._connected = False
