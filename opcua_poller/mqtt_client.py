"""MQTT output: one retained message per polled value."""

import asyncio
import json
import logging
import uuid
from typing import Any, Optional

import aiomqtt

from .config import MQTTConfig
from .output import ChangeFilter, ReconnectingOutput

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


def encode_payload(payload: Any) -> str:
    """JSON for dicts and lists, str() for scalars, empty for None."""
    if payload is None:
        return ""
    if isinstance(payload, (dict, list)):
        return json.dumps(payload, default=str)
    return str(payload)


class MQTTClient(ReconnectingOutput):
    """aiomqtt publisher under ``base_topic`` with a retained online/offline status.

    In ``on_change`` mode a payload equal to the last one sent on the same
    topic is counted as skipped instead of published.
    """

    name = "MQTT"

    def __init__(self, config: MQTTConfig):
        super().__init__(config.enabled, config.reconnect_delay)
        self.config = config
        self.client_id = config.client_id or f"opcua-poller-{uuid.uuid4().hex[:8]}"
        self._client: Optional[aiomqtt.Client] = None
        self._sent = ChangeFilter()
        self._publish_lock = asyncio.Lock()

        self.messages_published = 0
        self.messages_skipped = 0

    @property
    def status_topic(self) -> str:
        return self.topic("status")

    def topic(self, suffix: str) -> str:
        return f"{self.config.base_topic}/{suffix}"

    async def _open(self) -> None:
        client = aiomqtt.Client(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username or None,
            password=self.config.password or None,
            identifier=self.client_id,
            will=aiomqtt.Will(self.status_topic, OFFLINE, qos=self.config.qos, retain=True),
        )
        await client.__aenter__()
        self._client = client
        logger.info(f"Connected to MQTT broker at {self.config.host}:{self.config.port}")

    async def _on_connected(self) -> None:
        await self.publish("status", ONLINE, force=True)

    async def _close(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.__aexit__(None, None, None)

    async def stop(self) -> None:
        if self.connected:
            await self.publish("status", OFFLINE, force=True)
        await super().stop()

    async def publish(self, suffix: str, payload: Any, force: bool = False) -> bool:
        """Publish ``payload`` on ``<base_topic>/<suffix>``.

        Returns:
            False when disabled, disconnected or the broker rejected the
            message; True otherwise, including skipped unchanged payloads.
        """
        if not self.enabled:
            return False

        topic = self.topic(suffix)
        if not self.connected or self._client is None:
            logger.warning(f"Cannot publish to {topic}: not connected")
            self.mark_lost()
            return False

        if self.config.publish_mode == "on_change" and not force:
            if not self._sent.changed(topic, payload):
                self.messages_skipped += 1
                return True

        message = encode_payload(payload)
        try:
            async with self._publish_lock:
                await self._client.publish(
                    topic, message, qos=self.config.qos, retain=self.config.retain
                )
        except aiomqtt.MqttError as e:
            logger.error(f"MQTT publish to {topic} failed: {e}")
            self.mark_lost()
            return False

        self._sent.remember(topic, payload)
        self.messages_published += 1
        logger.debug(f"{topic} <- {message[:100]}")
        return True

    def get_stats(self) -> dict:
        return {
            'connected': self.connected,
            'messages_published': self.messages_published,
            'messages_skipped': self.messages_skipped,
            'publish_mode': self.config.publish_mode,
        }
