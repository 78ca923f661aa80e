"""
Shared fixtures for unit tests.

aiomqtt.Client is patched at the session module with FakeMqttClient so no
broker is needed; every client the session builds is recorded in order.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from neolink_mqtt.host import InMemoryHost
from neolink_mqtt.mqtt.session import MqttSession
from neolink_mqtt.provider import MQTT_HOST_KEY, NeolinkProvider
from neolink_mqtt.structs import BrokerCredentials

BROKER = "mqtt://broker.local:1883"


class FakeMqttClient:
    """Stands in for aiomqtt.Client: AsyncMock methods plus a feedable message stream."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.publish = AsyncMock()
        self.subscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.__aenter__ = AsyncMock(return_value=self)
        self.__aexit__ = AsyncMock(return_value=None)
        self.messages = self._messages()

    async def _messages(self):
        while True:
            item = await self.inbox.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def deliver(self, topic: str, payload: bytes | str) -> None:
        """Queue an inbound message for the session's receiver task."""
        if isinstance(payload, str):
            payload = payload.encode()
        self.inbox.put_nowait(SimpleNamespace(topic=SimpleNamespace(value=topic), payload=payload))

    def published(self) -> list[tuple[str, object, bool]]:
        """(topic, payload, retain) of every publish call so far."""
        return [(c.args[0], c.args[1], c.kwargs.get("retain")) for c in self.publish.await_args_list]


class FakeClientFactory(list):
    """Callable replacing aiomqtt.Client; a list of every client built.

    connect_error / publish_error are applied to clients created afterwards.
    """

    def __init__(self):
        super().__init__()
        self.connect_error: Exception | None = None
        self.publish_error: Exception | None = None

    def __call__(self, *_args, **kwargs):
        client = FakeMqttClient(**kwargs)
        if self.connect_error is not None:
            client.__aenter__.side_effect = self.connect_error
        if self.publish_error is not None:
            client.publish.side_effect = self.publish_error
        self.append(client)
        return client


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Awaitable that lets queued messages reach the dispatcher."""
    return _settle


@pytest.fixture
def mqtt_clients():
    """Patch aiomqtt.Client and collect the FakeMqttClients the session creates."""
    factory = FakeClientFactory()
    with patch("neolink_mqtt.mqtt.session.aiomqtt.Client", new=factory):
        yield factory


@pytest_asyncio.fixture
async def session(mqtt_clients):
    """MqttSession against the fake broker, disconnected after the test."""
    mqtt_session = MqttSession(BrokerCredentials(host=BROKER, username="neo", password="secret"), identifier="test")
    yield mqtt_session
    await mqtt_session.disconnect()


@pytest.fixture
def host():
    return InMemoryHost()


@pytest_asyncio.fixture
async def provider(host, mqtt_clients):
    """Provider whose plugin settings point at the fake broker."""
    host.storage_for(None).put_setting(MQTT_HOST_KEY, BROKER)
    neolink_provider = NeolinkProvider(host)
    yield neolink_provider
    await neolink_provider.stop()
