"""
MQTT command publisher for the Automations Service.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from shared.logging import get_logger
from shared.errors import AutomationException, ExternalServiceError, ValidationError

from ..rules.models import OutgoingCommand

DEFAULT_PORTS = {
    "mqtt": 1883,
    "tcp": 1883,
    "mqtts": 8883,
    "ssl": 8883,
    "ws": 80,
    "wss": 443,
}
TLS_SCHEMES = {"mqtts", "ssl", "wss"}
WEBSOCKET_SCHEMES = {"ws", "wss"}


@dataclass
class BrokerAddress:
    """Connection parameters derived from a broker URL."""
    host: str
    port: int
    transport: str = "tcp"
    tls: bool = False
    path: str = ""


@dataclass
class DispatchResult:
    """Outcome of publishing a batch of commands."""
    published: int = 0
    failed: int = 0
    failed_topics: List[str] = field(default_factory=list)


def parse_broker_url(url: str) -> BrokerAddress:
    """Parse ``mqtt://``, ``mqtts://``, ``ws://`` or ``wss://`` style broker URLs."""
    parsed = urlparse(url)
    scheme = (parsed.scheme or "").lower()
    if scheme not in DEFAULT_PORTS:
        raise ValidationError("Unsupported MQTT broker URL scheme", {"url": url, "scheme": scheme})
    if not parsed.hostname:
        raise ValidationError("MQTT broker URL has no host", {"url": url})

    return BrokerAddress(
        host=parsed.hostname,
        port=parsed.port or DEFAULT_PORTS[scheme],
        transport="websockets" if scheme in WEBSOCKET_SCHEMES else "tcp",
        tls=scheme in TLS_SCHEMES,
        path=parsed.path if scheme in WEBSOCKET_SCHEMES else "",
    )


class MqttCommandPublisher:
    """Publishes device commands on an MQTT broker (QoS 1 by default)."""

    def __init__(
        self,
        broker_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id_prefix: str = "automations",
        qos: int = 1,
        keepalive: int = 60,
        publish_timeout: float = 10.0
    ):
        self.broker_url = broker_url
        self.address = parse_broker_url(broker_url)
        self.username = username
        self.password = password
        self.client_id_prefix = client_id_prefix
        self.qos = qos
        self.keepalive = keepalive
        self.publish_timeout = publish_timeout
        self.logger = get_logger("automations.mqtt.publisher")
        self.client: Optional[mqtt.Client] = None

    async def start(self):
        """Connect to the broker and start the network loop."""
        client_id = f"{self.client_id_prefix}-{int(time.time() * 1000)}"
        try:
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
                transport=self.address.transport,
            )
            if self.username:
                client.username_pw_set(self.username, self.password)
            if self.address.tls:
                client.tls_set()
            if self.address.transport == "websockets":
                client.ws_set_options(path=self.address.path or "/mqtt")
            client.reconnect_delay_set(min_delay=1, max_delay=30)

            client.connect(self.address.host, self.address.port, keepalive=self.keepalive)
            client.loop_start()
            self.client = client

            self.logger.info(
                "MQTT publisher connected",
                host=self.address.host,
                port=self.address.port,
                transport=self.address.transport,
                client_id=client_id
            )

        except (OSError, ValueError) as e:
            self.logger.error("Failed to connect to MQTT broker", host=self.address.host, error=str(e))
            raise ExternalServiceError("mqtt", str(e), {"host": self.address.host, "port": self.address.port})

    async def stop(self):
        """Stop the network loop and disconnect."""
        if self.client:
            self.client.loop_stop()
            self.client.disconnect()
            self.client = None
            self.logger.info("MQTT publisher stopped")

    def is_connected(self) -> bool:
        return self.client is not None and self.client.is_connected()

    async def publish(self, topic: str, payload: str) -> bool:
        """Publish one message and wait for the broker acknowledgement."""
        if not self.client:
            raise AutomationException("MQTT_PUBLISHER_NOT_STARTED", "Publisher not started")

        info = self.client.publish(topic, payload, qos=self.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("MQTT publish rejected", topic=topic, error=mqtt.error_string(info.rc))
            return False

        try:
            await asyncio.to_thread(info.wait_for_publish, self.publish_timeout)
        except (RuntimeError, ValueError) as e:
            self.logger.error("MQTT publish failed", topic=topic, error=str(e))
            return False

        if not info.is_published():
            self.logger.error("MQTT publish timed out", topic=topic, timeout=self.publish_timeout)
            return False

        self.logger.debug("Published command", topic=topic, payload=payload, mid=info.mid)
        return True

    async def publish_command(self, command: OutgoingCommand) -> bool:
        return await self.publish(command.topic, command.payload)

    async def publish_commands(self, commands: Iterable[OutgoingCommand]) -> DispatchResult:
        """Publish commands in order; failures do not stop the batch."""
        result = DispatchResult()
        for command in commands:
            if await self.publish_command(command):
                result.published += 1
            else:
                result.failed += 1
                result.failed_topics.append(command.topic)
        return result
