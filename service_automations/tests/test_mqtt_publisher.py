"""
Unit tests for the MQTT command publisher.
"""

import pytest
from unittest.mock import patch, MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

import paho.mqtt.client as mqtt

from shared.errors import AutomationException, ExternalServiceError, ValidationError
from service_automations.app.mqtt.publisher import (
    BrokerAddress, MqttCommandPublisher, parse_broker_url
)
from service_automations.app.rules.models import OutgoingCommand


def make_publish_info(rc=mqtt.MQTT_ERR_SUCCESS, published=True):
    info = MagicMock()
    info.rc = rc
    info.mid = 1
    info.is_published.return_value = published
    return info


class TestParseBrokerUrl:
    """Test cases for broker URL parsing."""

    @pytest.mark.parametrize("url, expected", [
        ("mqtt://broker.local", BrokerAddress("broker.local", 1883)),
        ("tcp://broker.local:1884", BrokerAddress("broker.local", 1884)),
        ("mqtts://broker.local", BrokerAddress("broker.local", 8883, tls=True)),
        ("ws://broker.local:8080/mqtt", BrokerAddress("broker.local", 8080, "websockets", False, "/mqtt")),
        ("wss://broker.hivemq.com:8884/mqtt", BrokerAddress("broker.hivemq.com", 8884, "websockets", True, "/mqtt")),
    ])
    def test_supported_urls(self, url, expected):
        """Test supported schemes and default ports."""
        assert parse_broker_url(url) == expected

    @pytest.mark.parametrize("url", ["http://broker.local", "broker.local:1883", "mqtt://"])
    def test_invalid_urls(self, url):
        """Test unsupported or hostless URLs are rejected."""
        with pytest.raises(ValidationError):
            parse_broker_url(url)


class TestMqttCommandPublisher:
    """Test cases for MqttCommandPublisher."""

    @pytest.fixture
    def mock_client(self):
        """Patch the paho client class."""
        with patch('service_automations.app.mqtt.publisher.mqtt.Client') as client_cls:
            client = MagicMock()
            client.publish.return_value = make_publish_info()
            client.is_connected.return_value = True
            client_cls.return_value = client
            yield client_cls

    @pytest.fixture
    def publisher(self):
        """Create publisher with credentials."""
        return MqttCommandPublisher(
            "mqtts://broker.local",
            username="svc",
            password="secret",
            publish_timeout=2.0
        )

    @pytest.mark.asyncio
    async def test_start_connects(self, publisher, mock_client):
        """Test start configures credentials, TLS and connects."""
        await publisher.start()

        client = mock_client.return_value
        assert mock_client.call_args.kwargs["transport"] == "tcp"
        assert mock_client.call_args.kwargs["client_id"].startswith("automations-")
        client.username_pw_set.assert_called_once_with("svc", "secret")
        client.tls_set.assert_called_once()
        client.connect.assert_called_once_with("broker.local", 8883, keepalive=60)
        client.loop_start.assert_called_once()
        assert publisher.is_connected() is True

    @pytest.mark.asyncio
    async def test_start_websockets(self, mock_client):
        """Test websocket brokers set the websocket path."""
        publisher = MqttCommandPublisher("ws://broker.local:8080/ws")

        await publisher.start()

        client = mock_client.return_value
        assert mock_client.call_args.kwargs["transport"] == "websockets"
        client.ws_set_options.assert_called_once_with(path="/ws")
        client.username_pw_set.assert_not_called()
        client.tls_set.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_failure(self, publisher, mock_client):
        """Test connection errors surface as ExternalServiceError."""
        mock_client.return_value.connect.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(ExternalServiceError) as exc_info:
            await publisher.start()

        assert exc_info.value.code == "EXTERNAL_SERVICE_ERROR"
        assert publisher.client is None

    @pytest.mark.asyncio
    async def test_publish_before_start(self, publisher):
        """Test publishing requires a started client."""
        with pytest.raises(AutomationException) as exc_info:
            await publisher.publish("devices/a/commands", "{}")

        assert exc_info.value.code == "MQTT_PUBLISHER_NOT_STARTED"

    @pytest.mark.asyncio
    async def test_publish_command(self, publisher, mock_client):
        """Test a command is published with QoS 1 and acknowledged."""
        await publisher.start()
        command = OutgoingCommand("devices/actuator-5/commands", '{"fan_on":true}')

        assert await publisher.publish_command(command) is True

        client = mock_client.return_value
        client.publish.assert_called_once_with("devices/actuator-5/commands", '{"fan_on":true}', qos=1)
        client.publish.return_value.wait_for_publish.assert_called_once_with(2.0)

    @pytest.mark.asyncio
    async def test_publish_rejected(self, publisher, mock_client):
        """Test a rejected publish returns False."""
        await publisher.start()
        mock_client.return_value.publish.return_value = make_publish_info(rc=mqtt.MQTT_ERR_NO_CONN)

        assert await publisher.publish("devices/a/commands", "{}") is False

    @pytest.mark.asyncio
    async def test_publish_timeout(self, publisher, mock_client):
        """Test an unacknowledged publish returns False."""
        await publisher.start()
        mock_client.return_value.publish.return_value = make_publish_info(published=False)

        assert await publisher.publish("devices/a/commands", "{}") is False

    @pytest.mark.asyncio
    async def test_publish_wait_error(self, publisher, mock_client):
        """Test errors while waiting for the acknowledgement return False."""
        await publisher.start()
        info = make_publish_info()
        info.wait_for_publish.side_effect = RuntimeError("connection lost")
        mock_client.return_value.publish.return_value = info

        assert await publisher.publish("devices/a/commands", "{}") is False

    @pytest.mark.asyncio
    async def test_publish_commands_counts(self, publisher, mock_client):
        """Test batch dispatch keeps going after a failure."""
        await publisher.start()
        mock_client.return_value.publish.side_effect = [
            make_publish_info(),
            make_publish_info(published=False),
            make_publish_info(),
        ]
        commands = [
            OutgoingCommand("devices/a/commands", '{"on":true}'),
            OutgoingCommand("devices/b/commands", '{"on":true}'),
            OutgoingCommand("devices/c/commands", '{"on":true}'),
        ]

        result = await publisher.publish_commands(commands)

        assert result.published == 2
        assert result.failed == 1
        assert result.failed_topics == ["devices/b/commands"]

    @pytest.mark.asyncio
    async def test_stop(self, publisher, mock_client):
        """Test stop disconnects and forgets the client."""
        await publisher.start()

        await publisher.stop()

        client = mock_client.return_value
        client.loop_stop.assert_called_once()
        client.disconnect.assert_called_once()
        assert publisher.client is None
        assert publisher.is_connected() is False
