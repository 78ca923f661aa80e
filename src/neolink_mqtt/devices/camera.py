"""Camera device adapter: host commands to neolink topics and back."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping
from json import JSONDecodeError
from typing import TYPE_CHECKING, Any, TypeVar

from neolink_mqtt import const
from neolink_mqtt.devices.abilities import ABILITY_DEVICES, OnOffAbility, ability_device_for, required_capabilities
from neolink_mqtt.exceptions import DecodeError, NeolinkError
from neolink_mqtt.logging_abstraction import get_logger
from neolink_mqtt.mqtt.topics import TopicSet, topics_for
from neolink_mqtt.structs import (
    Ability,
    CameraConnection,
    CameraState,
    DeviceManifest,
    DeviceType,
    PtzAxis,
    PtzCommand,
    SettingsStorageProtocol,
)
from neolink_mqtt.utils import decode_preview, friendly_camera_name

if TYPE_CHECKING:
    from neolink_mqtt.provider import NeolinkProvider

logger = get_logger(__name__)

CAMERA_NAME_KEY = "cameraName"
DISPLAY_NAME_KEY = "name"
MOTION_TIMEOUT_KEY = "motionTimeout"
ABILITIES_KEY = "abilities"
PTZ_KEY = "ptz"
IR_MODES = ("on", "off", "auto")

E = TypeVar("E", Ability, PtzAxis)


def ptz_direction(command: PtzCommand) -> str | None:
    """neolink direction token for the first nonzero axis, or None."""
    if command.pan < 0:
        return "left"
    if command.pan > 0:
        return "right"
    if command.tilt < 0:
        return "down"
    if command.tilt > 0:
        return "up"
    if command.zoom < 0:
        return "out"
    if command.zoom > 0:
        return "in"
    return None


class NeolinkCamera:
    """One camera configured in the neolink bridge.

    State flows in from status topics through the provider's shared session;
    commands flow out as publishes on the camera's control/query topics.
    """

    lp: str = "camera:"

    def __init__(self, native_id: str, provider: NeolinkProvider, storage: SettingsStorageProtocol) -> None:
        self.native_id: str = native_id
        self.provider: NeolinkProvider = provider
        self.storage: SettingsStorageProtocol = storage
        self.state: CameraState = CameraState()
        self.info: dict[str, Any] = {"manufacturer": "Reolink", "model": "neolink"}
        self.ability_devices: dict[str, OnOffAbility] = {}
        self.snapshot_grace_period: float = const.SNAPSHOT_GRACE_SECONDS
        self.battery_poll_interval: float = const.BATTERY_POLL_SECONDS
        self._subscribed: set[str] = set()
        self._motion_clear: asyncio.TimerHandle | None = None
        self._battery_poll_task: asyncio.Task[None] | None = None
        self.lp = f"{self.lp}{native_id}:"

    # -- configuration -------------------------------------------------

    @property
    def camera_name(self) -> str:
        return self.storage.get_setting(CAMERA_NAME_KEY) or ""

    @property
    def name(self) -> str:
        stored = self.storage.get_setting(DISPLAY_NAME_KEY)
        if stored:
            return stored
        return friendly_camera_name(self.camera_name) if self.camera_name else const.DEFAULT_CAMERA_NAME

    @property
    def topics(self) -> TopicSet:
        return topics_for(self.camera_name)

    @property
    def motion_timeout(self) -> float:
        raw = self.storage.get_setting(MOTION_TIMEOUT_KEY)
        if not raw:
            return const.MOTION_TIMEOUT_SECONDS
        try:
            return float(raw)
        except ValueError:
            logger.warning("%s Invalid motion timeout %r, using %ss", self.lp, raw, const.MOTION_TIMEOUT_SECONDS)
            return const.MOTION_TIMEOUT_SECONDS

    @property
    def abilities(self) -> set[Ability]:
        return self._read_flags(ABILITIES_KEY, Ability)

    @property
    def ptz_axes(self) -> set[PtzAxis]:
        return self._read_flags(PTZ_KEY, PtzAxis)

    def has_ability(self, ability: Ability) -> bool:
        return ability in self.abilities

    def _read_flags(self, key: str, enum_cls: type[E]) -> set[E]:
        raw = self.storage.get_setting(key)
        if not raw:
            return set()
        try:
            items = json.loads(raw)
        except JSONDecodeError:
            items = raw.split(",")
        if isinstance(items, str):
            items = [items]
        flags: set[E] = set()
        for item in items:
            try:
                flags.add(enum_cls(str(item).strip()))
            except ValueError:
                logger.warning("%s Ignoring unknown %s value: %r", self.lp, key, item)
        return flags

    def store_setting(self, key: str, value: object) -> None:
        """Write one setting to device storage; collections are stored as JSON lists.

        Raises:
            ValueError: attempt to change the neolink camera name once set

        """
        if key == CAMERA_NAME_KEY and self.camera_name and value != self.camera_name:
            msg = f"camera name is fixed once set (current: {self.camera_name!r})"
            raise ValueError(msg)
        if value is None:
            stored = None
        elif isinstance(value, (list, tuple, set, frozenset)):
            stored = json.dumps(sorted(str(v) for v in value))
        else:
            stored = str(value)
        self.storage.put_setting(key, stored)

    async def put_setting(self, key: str, value: object) -> None:
        """Store a device setting and refresh the device."""
        self.store_setting(key, value)
        await self.refresh()

    # -- host device model ---------------------------------------------

    def manifest(self) -> DeviceManifest:
        return DeviceManifest(
            native_id=self.native_id,
            name=self.name,
            type=DeviceType.CAMERA,
            interfaces=sorted(required_capabilities(self.abilities, self.ptz_axes)),
            info=dict(self.info),
        )

    def report_event(self, native_id: str, event: str, value: object) -> None:
        self.provider.host.device_registry.on_device_event(native_id, event, value)

    def _update_state(self, **changes: object) -> None:
        for field, value in changes.items():
            if getattr(self.state, field) == value:
                continue
            setattr(self.state, field, value)
            self.report_event(self.native_id, field, value)

    async def refresh(self) -> None:
        """Re-register the device, its listeners, battery polling and child devices."""
        lp = f"{self.lp}refresh:"
        if not self.camera_name:
            logger.warning("%s No neolink camera name configured, skipping", lp)
            return

        await self.provider.host.device_registry.register_or_update_device(self.manifest())
        try:
            await self.start_listeners()
        except NeolinkError as err:
            logger.warning("%s Could not subscribe to camera topics: %s", lp, err)

        if self.has_ability(Ability.BATTERY):
            self.start_battery_polling()
        else:
            self.stop_battery_polling()
        await self.report_devices()

    async def report_devices(self) -> None:
        """Announce one child device per configured on/off ability."""
        abilities = self.abilities
        manifests = [cls.manifest(self) for cls in ABILITY_DEVICES if cls.ability in abilities]
        kept = {m.native_id for m in manifests}
        for native_id in [n for n in self.ability_devices if n not in kept]:
            del self.ability_devices[native_id]
        await self.provider.host.device_registry.on_devices_changed(self.native_id, manifests)

    def get_device(self, native_id: str) -> OnOffAbility | None:
        device = self.ability_devices.get(native_id)
        if device is not None:
            return device
        if not native_id.startswith(self.native_id):
            return None
        cls = ability_device_for(native_id)
        if cls is None:
            return None
        device = self.ability_devices[native_id] = cls(self, native_id)
        return device

    def release_device(self, native_id: str) -> None:
        _ = self.ability_devices.pop(native_id, None)

    # -- inbound status ------------------------------------------------

    def _status_handlers(self) -> dict[str, Callable[[str], None]]:
        topics = self.topics
        handlers: dict[str, Callable[[str], None]] = {
            topics.connection_status: self._on_connection_status,
            topics.motion_status: self._on_motion,
            topics.preview_status: self._on_preview,
            topics.ptz_preset_status: self._on_ptz_presets,
        }
        if self.has_ability(Ability.BATTERY):
            handlers[topics.battery_status] = self._on_battery
        return handlers

    async def start_listeners(self) -> None:
        """(Re-)subscribe every status topic this camera consumes."""
        session = await self.provider.get_session()
        handlers = self._status_handlers()
        for topic in self._subscribed - handlers.keys():
            await session.unsubscribe(topic)
            self._subscribed.discard(topic)
        for topic, handler in handlers.items():
            await session.subscribe(topic, handler)
            self._subscribed.add(topic)
        logger.debug("%s Listening on %d topics", self.lp, len(handlers))

    def _on_connection_status(self, payload: str) -> None:
        value = payload.strip().casefold()
        if value == CameraConnection.CONNECTED:
            self._update_state(connection=CameraConnection.CONNECTED)
        elif value == CameraConnection.DISCONNECTED:
            self._update_state(connection=CameraConnection.DISCONNECTED)
        else:
            logger.debug("%s Ignoring status payload %r", self.lp, payload)

    def _on_motion(self, payload: str) -> None:
        value = payload.strip().casefold()
        if value == "on":
            self._update_state(motion_detected=True)
            self._arm_motion_clear()
        elif value == "off":
            self._cancel_motion_clear()
            self._update_state(motion_detected=False)

    def _arm_motion_clear(self) -> None:
        self._cancel_motion_clear()
        loop = asyncio.get_running_loop()
        self._motion_clear = loop.call_later(self.motion_timeout, self._clear_motion)

    def _cancel_motion_clear(self) -> None:
        handle, self._motion_clear = self._motion_clear, None
        if handle is not None:
            handle.cancel()

    def _clear_motion(self) -> None:
        self._motion_clear = None
        self._update_state(motion_detected=False)

    def _on_battery(self, payload: str) -> None:
        topic = self.topics.battery_status
        try:
            level = json.loads(payload)
        except JSONDecodeError as err:
            logger.warning("%s %s", self.lp, DecodeError(topic, payload, str(err)))
            return
        if level is not None and (isinstance(level, bool) or not isinstance(level, (int, float))):
            logger.warning("%s %s", self.lp, DecodeError(topic, payload, "not a number"))
            return
        self._update_state(battery_level=level)

    def _on_preview(self, payload: str) -> None:
        self.state.last_preview = payload or None

    def _on_ptz_presets(self, payload: str) -> None:
        logger.info("%s PTZ presets: %s", self.lp, payload)
        self._update_state(ptz_presets=payload)

    # -- outbound commands ---------------------------------------------

    async def send_command(self, topic: str, value: object, retain: bool = True) -> bool:
        """Publish through the shared session, logging failures before re-raising."""
        try:
            session = await self.provider.get_session()
            return await session.publish(topic, value, retain=retain)
        except NeolinkError as err:
            logger.error("%s Command to %s failed: %s", self.lp, topic, err)
            raise

    async def ptz_command(self, command: PtzCommand | Mapping[str, Any]) -> None:
        """Move the camera in one direction, or go to a numeric preset."""
        if not isinstance(command, PtzCommand):
            command = PtzCommand.model_validate(command)

        if command.preset is not None:
            preset = str(command.preset).strip()
            if preset.isdigit():
                _ = await self.send_command(self.topics.ptz_preset_control, preset, retain=False)
                return
            logger.warning("%s Ignoring non-numeric PTZ preset %r", self.lp, command.preset)

        op = ptz_direction(command)
        if op is None:
            logger.debug("%s PTZ command with no movement, nothing to send", self.lp)
            return
        _ = await self.send_command(self.topics.ptz_control, f"{op} {const.PTZ_SPEED}", retain=False)

    async def request_presets(self) -> None:
        _ = await self.send_command(self.topics.ptz_preset_query, "", retain=False)

    async def reboot(self) -> None:
        logger.info("%s Rebooting camera", self.lp)
        _ = await self.send_command(self.topics.reboot_control, "", retain=False)

    async def set_led(self, on: bool) -> None:
        _ = await self.send_command(self.topics.led_control, "on" if on else "off")

    async def set_ir(self, mode: str) -> None:
        mode = mode.casefold()
        if mode not in IR_MODES:
            msg = f"IR mode must be one of {IR_MODES}, got {mode!r}"
            raise ValueError(msg)
        _ = await self.send_command(self.topics.ir_control, mode)

    async def take_picture(self) -> Any | None:
        """Return the latest preview as a host media object, or None if there is none.

        Mains-powered cameras are asked for a fresh preview first; battery
        cameras are left asleep and serve the last polled preview.
        """
        lp = f"{self.lp}picture:"
        if not self.has_ability(Ability.BATTERY):
            try:
                _ = await self.send_command(self.topics.preview_query, "", retain=False)
            except NeolinkError:
                logger.warning("%s Preview query failed, using cached preview", lp)
            await asyncio.sleep(self.snapshot_grace_period)

        preview = self.state.last_preview
        if not preview:
            logger.debug("%s No preview available", lp)
            return None
        try:
            image = decode_preview(preview)
        except ValueError as err:
            logger.warning("%s %s", lp, DecodeError(self.topics.preview_status, preview[:32], str(err)))
            return None
        if not image:
            return None
        return await self.provider.host.media.create_media_object(image, const.SNAPSHOT_MIME_TYPE)

    # -- timers --------------------------------------------------------

    def start_battery_polling(self) -> None:
        self.stop_battery_polling()
        self._battery_poll_task = asyncio.create_task(self._poll_battery(), name=f"{self.native_id}_battery_poll")

    def stop_battery_polling(self) -> None:
        task, self._battery_poll_task = self._battery_poll_task, None
        if task is not None and not task.done():
            _ = task.cancel()

    async def _poll_battery(self) -> None:
        """Battery cameras never push on their own: ask for battery and preview periodically."""
        lp = f"{self.lp}battery_poll:"
        while True:
            await asyncio.sleep(self.battery_poll_interval)
            topics = self.topics
            try:
                session = await self.provider.get_session()
                _ = await session.publish(topics.battery_query, "", retain=False)
                _ = await session.publish(topics.preview_query, "", retain=False)
            except NeolinkError as err:
                logger.warning("%s Battery poll failed: %s", lp, err)
            except Exception:
                logger.exception("%s Unexpected error in battery poll", lp)

    async def release(self) -> None:
        """Cancel timers and unsubscribe every topic this camera listens on."""
        lp = f"{self.lp}release:"
        self._cancel_motion_clear()
        self.stop_battery_polling()
        topics, self._subscribed = self._subscribed, set()
        session = self.provider.session
        if session is None:
            return
        for topic in topics:
            try:
                await session.unsubscribe(topic)
            except NeolinkError as err:
                logger.warning("%s Unsubscribe from %s failed: %s", lp, topic, err)
