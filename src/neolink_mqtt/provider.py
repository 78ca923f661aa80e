"""Plugin-level device provider.

Resolves broker credentials, owns the one MqttSession every camera shares,
and creates, looks up and releases camera adapters.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Coroutine, Mapping
from typing import Any

from pydantic import ValidationError

from neolink_mqtt import const
from neolink_mqtt.devices.abilities import OnOffAbility
from neolink_mqtt.devices.camera import CAMERA_NAME_KEY, DISPLAY_NAME_KEY, NeolinkCamera
from neolink_mqtt.exceptions import MqttConnectionError, NeolinkError
from neolink_mqtt.logging_abstraction import get_logger
from neolink_mqtt.mqtt.session import MqttSession
from neolink_mqtt.structs import BrokerCredentials, HostProtocol, SettingsStorageProtocol
from neolink_mqtt.utils import friendly_camera_name

logger = get_logger(__name__)

MQTT_HOST_KEY = "mqttHost"
MQTT_USERNAME_KEY = "mqttUsername"
MQTT_PASSWORD_KEY = "mqttPassword"
MQTT_SETTING_KEYS = frozenset({MQTT_HOST_KEY, MQTT_USERNAME_KEY, MQTT_PASSWORD_KEY})

# keys of the host's own MQTT integration settings
SHARED_BROKER_HOST_KEY = "externalBroker"
SHARED_BROKER_USERNAME_KEY = "username"
SHARED_BROKER_PASSWORD_KEY = "password"


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    value = str(value)
    return value if value else None


class NeolinkProvider:
    """Creates and tracks NeolinkCamera adapters for one host."""

    lp: str = "provider:"

    def __init__(self, host: HostProtocol, session_renew_seconds: float | None = None) -> None:
        self.host: HostProtocol = host
        self.storage: SettingsStorageProtocol = host.storage_for(None)
        self.session: MqttSession | None = None
        self.session_renew_seconds: float = (
            const.SESSION_RENEW_SECONDS if session_renew_seconds is None else session_renew_seconds
        )
        self.cameras: dict[str, NeolinkCamera] = {}
        self._session_started: float | None = None
        self._background: set[asyncio.Task[None]] = set()

    # -- broker ----------------------------------------------------------

    async def resolve_credentials(self) -> BrokerCredentials:
        """Pick broker credentials: plugin overrides, then the host's shared broker, then env.

        Raises:
            MqttConnectionError: no broker is configured anywhere

        """
        lp = f"{self.lp}credentials:"
        source = "plugin"
        host = _optional_str(self.storage.get_setting(MQTT_HOST_KEY))
        username = _optional_str(self.storage.get_setting(MQTT_USERNAME_KEY))
        password = _optional_str(self.storage.get_setting(MQTT_PASSWORD_KEY))

        if not host and self.host.shared_broker is not None:
            shared: Mapping[str, object] = await self.host.shared_broker.get_settings()
            host = _optional_str(shared.get(SHARED_BROKER_HOST_KEY))
            if host:
                source = "shared"
                username = _optional_str(shared.get(SHARED_BROKER_USERNAME_KEY))
                password = _optional_str(shared.get(SHARED_BROKER_PASSWORD_KEY))

        if not host and const.NEOLINK_MQTT_HOST:
            source = "env"
            host, username, password = const.NEOLINK_MQTT_HOST, const.NEOLINK_MQTT_USER, const.NEOLINK_MQTT_PASS

        if not host:
            logger.error("%s No MQTT broker configured", lp)
            raise MqttConnectionError("no MQTT broker configured")

        try:
            credentials = BrokerCredentials(host=host, username=username, password=password)
        except ValidationError as err:
            raise MqttConnectionError(f"invalid broker settings: {err}", host) from err
        logger.debug("%s Using %s broker settings", lp, source, extra={"broker": credentials.host})
        return credentials

    def _session_is_stale(self) -> bool:
        if self._session_started is None:
            return True
        return time.monotonic() - self._session_started >= self.session_renew_seconds

    async def get_session(self) -> MqttSession:
        """Return the shared session, creating it or renewing it when stale.

        Raises:
            MqttConnectionError: no broker configured for a first session

        """
        lp = f"{self.lp}get_session:"
        if self.session is not None and not self._session_is_stale():
            return self.session

        if self.session is None:
            credentials = await self.resolve_credentials()
            if self.session is None:
                self.session = MqttSession(credentials)
                self.session.add_reconnect_listener(self.resubscribe_all)
                self._session_started = time.monotonic()
                logger.info("%s Created MQTT session", lp, extra={"broker": credentials.host})
            return self.session

        # claim the renewal before awaiting so concurrent callers skip it
        self._session_started = time.monotonic()
        logger.info("%s Renewing MQTT session", lp)
        await self.renew_session()
        return self.session

    async def renew_session(self) -> None:
        """Reconnect with freshly resolved credentials and have every camera re-subscribe."""
        lp = f"{self.lp}renew:"
        try:
            credentials = await self.resolve_credentials()
        except MqttConnectionError as err:
            logger.warning("%s Keeping current session: %s", lp, err)
            return
        if self.session is None:
            self.session = MqttSession(credentials)
            self.session.add_reconnect_listener(self.resubscribe_all)
        else:
            await self.session.reconfigure(credentials)
        self._session_started = time.monotonic()
        self._spawn(self.resubscribe_all())

    async def resubscribe_all(self) -> None:
        lp = f"{self.lp}resubscribe:"
        for camera in list(self.cameras.values()):
            try:
                await camera.start_listeners()
            except NeolinkError as err:
                logger.warning("%s %s could not re-subscribe: %s", lp, camera.native_id, err)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -- devices ---------------------------------------------------------

    async def create_device(self, camera_name: str, **settings: object) -> str:
        """Create a camera device for a neolink camera name and return its native id.

        Raises:
            ValueError: empty camera name

        """
        camera_name = (camera_name or "").strip()
        if not camera_name:
            msg = "camera name is required"
            raise ValueError(msg)

        native_id = uuid.uuid4().hex
        name = settings.pop(DISPLAY_NAME_KEY, None) or friendly_camera_name(camera_name)
        camera = NeolinkCamera(native_id, self, self.host.storage_for(native_id))
        camera.store_setting(CAMERA_NAME_KEY, camera_name)
        camera.store_setting(DISPLAY_NAME_KEY, name)
        for key, value in settings.items():
            camera.store_setting(key, value)
        self.cameras[native_id] = camera
        logger.info("%s Created camera %s", self.lp, name, extra={"native_id": native_id, "camera": camera_name})
        await camera.refresh()
        return native_id

    async def get_device(self, native_id: str) -> NeolinkCamera | OnOffAbility | None:
        """Camera adapter or child sub-adapter for native_id.

        Cameras persisted in host storage are re-attached on first lookup.
        """
        camera = self.cameras.get(native_id)
        if camera is not None:
            return camera

        for parent in self.cameras.values():
            if native_id.startswith(parent.native_id):
                child = parent.get_device(native_id)
                if child is not None:
                    return child

        storage = self.host.storage_for(native_id)
        if not storage.get_setting(CAMERA_NAME_KEY):
            logger.debug("%s Unknown device %s", self.lp, native_id)
            return None
        camera = self.cameras[native_id] = NeolinkCamera(native_id, self, storage)
        await camera.refresh()
        return camera

    async def release_device(self, native_id: str) -> None:
        camera = self.cameras.pop(native_id, None)
        if camera is not None:
            await camera.release()
            return
        for parent in self.cameras.values():
            if native_id.startswith(parent.native_id):
                parent.release_device(native_id)
                return

    async def put_setting(self, key: str, value: object) -> None:
        """Store a plugin setting; broker settings renew the shared session."""
        self.storage.put_setting(key, None if value is None else str(value))
        if key in MQTT_SETTING_KEYS and self.session is not None:
            logger.info("%s Broker setting %s changed", self.lp, key)
            await self.renew_session()

    async def stop(self) -> None:
        """Release every camera and close the broker connection."""
        lp = f"{self.lp}stop:"
        for native_id in list(self.cameras):
            await self.release_device(native_id)
        for task in list(self._background):
            _ = task.cancel()
        if self._background:
            _ = await asyncio.wait(list(self._background))
        if self.session is not None:
            await self.session.disconnect()
        logger.info("%s Provider stopped", lp)
