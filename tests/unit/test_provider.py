"""
Unit tests for NeolinkProvider: credentials, the shared session, and device lifecycle.
"""

import asyncio
from unittest.mock import patch

import pytest

from neolink_mqtt.devices.camera import NeolinkCamera
from neolink_mqtt.exceptions import MqttConnectionError
from neolink_mqtt.host import InMemoryHost, StaticSharedBroker
from neolink_mqtt.mqtt.topics import topics_for
from neolink_mqtt.provider import NeolinkProvider

SHARED = {"externalBroker": "mqtt://shared.local:1883", "username": "host", "password": "hostpw"}


@pytest.fixture
def no_env_broker():
    with patch("neolink_mqtt.const.NEOLINK_MQTT_HOST", None):
        yield


class TestResolveCredentials:
    """Tests for broker credential precedence"""

    @pytest.mark.asyncio
    async def test_plugin_override_wins(self):
        """Test plugin mqttHost beats the shared broker"""
        host = InMemoryHost(shared_broker=StaticSharedBroker(SHARED))
        storage = host.storage_for(None)
        storage.put_setting("mqttHost", "mqtt://override.local")
        storage.put_setting("mqttUsername", "me")

        credentials = await NeolinkProvider(host).resolve_credentials()
        assert credentials.host == "mqtt://override.local"
        assert credentials.username == "me"
        assert credentials.password is None

    @pytest.mark.asyncio
    async def test_shared_broker(self):
        """Test the host's shared broker settings are used without overrides"""
        host = InMemoryHost(shared_broker=StaticSharedBroker(SHARED))

        credentials = await NeolinkProvider(host).resolve_credentials()
        assert credentials.host == "mqtt://shared.local:1883"
        assert (credentials.username, credentials.password) == ("host", "hostpw")

    @pytest.mark.asyncio
    async def test_env_fallback(self):
        """Test NEOLINK_MQTT_* are used when nothing else is configured"""
        with (
            patch("neolink_mqtt.const.NEOLINK_MQTT_HOST", "env.local:1884"),
            patch("neolink_mqtt.const.NEOLINK_MQTT_USER", "envuser"),
            patch("neolink_mqtt.const.NEOLINK_MQTT_PASS", "envpw"),
        ):
            credentials = await NeolinkProvider(InMemoryHost()).resolve_credentials()
        assert credentials.host == "env.local:1884"
        assert credentials.username == "envuser"

    @pytest.mark.asyncio
    async def test_nothing_configured(self, no_env_broker):
        """Test MqttConnectionError when no broker is configured"""
        with pytest.raises(MqttConnectionError, match="no MQTT broker configured"):
            _ = await NeolinkProvider(InMemoryHost()).resolve_credentials()


class TestSharedSession:
    """Tests for get_session()"""

    @pytest.mark.asyncio
    async def test_one_session_for_all_cameras(self, provider, mqtt_clients):
        """Test every camera publishes through the same session and client"""
        first = await provider.create_device("FrontDoor")
        second = await provider.create_device("Backyard")

        assert await provider.get_session() is await provider.get_session()
        await provider.cameras[first].set_led(True)
        await provider.cameras[second].set_led(True)
        assert len(mqtt_clients) == 1
        topics = [p[0] for p in mqtt_clients[0].published()]
        assert topics == [topics_for("FrontDoor").led_control, topics_for("Backyard").led_control]

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_share_session(self, provider):
        """Test simultaneous first callers get the same session"""
        sessions = await asyncio.gather(provider.get_session(), provider.get_session())
        assert sessions[0] is sessions[1]

    @pytest.mark.asyncio
    async def test_stale_session_renewed(self, host, mqtt_clients, settle):
        """Test an old session reconnects and cameras re-subscribe"""
        host.storage_for(None).put_setting("mqttHost", "mqtt://broker.local")
        provider = NeolinkProvider(host, session_renew_seconds=0.05)
        native_id = await provider.create_device("GarageCam")
        session = await provider.get_session()

        await asyncio.sleep(0.06)
        assert await provider.get_session() is session
        await settle(20)

        assert len(mqtt_clients) == 2
        subscribed = [c.args[0] for c in mqtt_clients[1].subscribe.await_args_list]
        assert topics_for("GarageCam").motion_status in subscribed
        assert provider.cameras[native_id] is not None
        await provider.stop()

    @pytest.mark.asyncio
    async def test_broker_setting_change_reconfigures(self, provider, mqtt_clients, settle):
        """Test changing mqttHost reconnects to the new broker"""
        _ = await provider.create_device("GarageCam")
        await provider.put_setting("mqttHost", "mqtt://new.local:1885")
        await settle(20)

        assert mqtt_clients[-1].kwargs["hostname"] == "new.local"
        assert mqtt_clients[-1].kwargs["port"] == 1885

    @pytest.mark.asyncio
    async def test_reconnect_resubscribes_cameras(self, provider, mqtt_clients, settle):
        """Test a forced reconnect makes cameras subscribe on the new client"""
        _ = await provider.create_device("GarageCam")
        session = await provider.get_session()

        _ = await session.connect(force_reconnect=True)
        await settle(20)

        subscribed = {c.args[0] for c in mqtt_clients[1].subscribe.await_args_list}
        assert topics_for("GarageCam").connection_status in subscribed


class TestDevices:
    """Tests for device creation, lookup and release"""

    @pytest.mark.asyncio
    async def test_create_device(self, provider, host):
        """Test settings are persisted and the display name is prettified"""
        native_id = await provider.create_device("FrontDoorCam", motionTimeout=30, abilities=["Siren"])

        storage = host.storage_for(native_id)
        assert storage.get_setting("cameraName") == "FrontDoorCam"
        assert storage.get_setting("name") == "Front Door Cam"
        assert storage.get_setting("motionTimeout") == "30"
        assert storage.get_setting("abilities") == '["Siren"]'

    @pytest.mark.asyncio
    async def test_explicit_display_name(self, provider, host):
        """Test a given display name is kept as-is"""
        native_id = await provider.create_device("cam1", name="Driveway")
        assert host.device_registry.devices[native_id].name == "Driveway"

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, provider):
        """Test create_device refuses an empty camera name"""
        with pytest.raises(ValueError, match="camera name is required"):
            _ = await provider.create_device("  ")

    @pytest.mark.asyncio
    async def test_create_without_broker_still_registers(self, no_env_broker):
        """Test a camera is registered even when no broker is configured yet"""
        host = InMemoryHost()
        provider = NeolinkProvider(host)

        native_id = await provider.create_device("GarageCam")
        assert native_id in host.device_registry.devices
        assert provider.session is None
        await provider.stop()

    @pytest.mark.asyncio
    async def test_get_device_reattaches_stored_camera(self, host, mqtt_clients):
        """Test a camera persisted in storage is rebuilt on lookup by a new provider"""
        host.storage_for(None).put_setting("mqttHost", "mqtt://broker.local")
        first = NeolinkProvider(host)
        native_id = await first.create_device("GarageCam")
        await first.stop()

        second = NeolinkProvider(host)
        camera = await second.get_device(native_id)
        assert isinstance(camera, NeolinkCamera)
        assert camera.camera_name == "GarageCam"
        await second.stop()

    @pytest.mark.asyncio
    async def test_get_unknown_device(self, provider):
        """Test an unknown native id returns None"""
        assert await provider.get_device("missing") is None

    @pytest.mark.asyncio
    async def test_release_device_unsubscribes(self, provider, mqtt_clients):
        """Test releasing a camera drops it and its subscriptions"""
        native_id = await provider.create_device("GarageCam")
        await provider.release_device(native_id)

        assert native_id not in provider.cameras
        unsubscribed = {c.args[0] for c in mqtt_clients[0].unsubscribe.await_args_list}
        assert topics_for("GarageCam").motion_status in unsubscribed

    @pytest.mark.asyncio
    async def test_stop_disconnects(self, provider, mqtt_clients):
        """Test stop() releases cameras and closes the broker connection"""
        _ = await provider.create_device("GarageCam")
        await provider.stop()

        assert provider.cameras == {}
        mqtt_clients[0].__aexit__.assert_awaited()
        assert provider.session.client is None
