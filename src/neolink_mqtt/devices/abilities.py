"""On/off child devices of a camera and the camera capability mapping."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, ClassVar

from neolink_mqtt.logging_abstraction import get_logger
from neolink_mqtt.structs import Ability, Capability, DeviceManifest, DeviceType, PtzAxis

if TYPE_CHECKING:
    from neolink_mqtt.devices.camera import NeolinkCamera

logger = get_logger(__name__)

BASE_CAPABILITIES: frozenset[Capability] = frozenset(
    {
        Capability.CAMERA,
        Capability.VIDEO_CAMERA_CONFIGURATION,
        Capability.MOTION_SENSOR,
        Capability.SETTINGS,
        Capability.ONLINE,
        Capability.REBOOT,
    }
)


def required_capabilities(abilities: Iterable[Ability], ptz_axes: Iterable[PtzAxis] = ()) -> set[Capability]:
    """Interfaces a camera exposes for its configured abilities and PTZ axes."""
    abilities = set(abilities)
    capabilities = set(BASE_CAPABILITIES)
    if set(ptz_axes):
        capabilities.add(Capability.PAN_TILT_ZOOM)
    if abilities & CHILD_ABILITIES:
        capabilities.add(Capability.DEVICE_PROVIDER)
    if Ability.BATTERY in abilities:
        capabilities.add(Capability.BATTERY)
    return capabilities


class OnOffAbility:
    """A camera feature switched by publishing on/off to one control topic."""

    lp: str = "ability:"
    ability: ClassVar[Ability]
    topic_role: ClassVar[str]
    suffix: ClassVar[str]
    label: ClassVar[str]
    device_type: ClassVar[DeviceType] = DeviceType.SWITCH

    def __init__(self, camera: NeolinkCamera, native_id: str) -> None:
        self.camera: NeolinkCamera = camera
        self.native_id: str = native_id
        self.on: bool = False
        self.lp = f"{camera.lp}{self.label.casefold().replace(' ', '_')}:"

    @classmethod
    def native_id_for(cls, camera_native_id: str) -> str:
        return f"{camera_native_id}{cls.suffix}"

    @classmethod
    def manifest(cls, camera: NeolinkCamera) -> DeviceManifest:
        return DeviceManifest(
            native_id=cls.native_id_for(camera.native_id),
            name=f"{camera.name} {cls.label}",
            type=cls.device_type,
            interfaces=[Capability.ON_OFF],
            provider_native_id=camera.native_id,
            info=dict(camera.info),
        )

    @property
    def control_topic(self) -> str:
        return getattr(self.camera.topics, self.topic_role)

    async def turn_on(self) -> None:
        await self._set(True)

    async def turn_off(self) -> None:
        await self._set(False)

    async def _set(self, on: bool) -> None:
        self.on = on
        self.camera.report_event(self.native_id, "on", on)
        logger.info("%s Switching %s", self.lp, "on" if on else "off")
        # retained: neolink re-applies the last state when it reconnects
        _ = await self.camera.send_command(self.control_topic, "on" if on else "off", retain=True)


class NeolinkSiren(OnOffAbility):
    ability = Ability.SIREN
    topic_role = "siren_control"
    suffix = "-siren"
    label = "Siren"
    device_type = DeviceType.SIREN


class NeolinkFloodlight(OnOffAbility):
    ability = Ability.FLOODLIGHT
    topic_role = "floodlight_control"
    suffix = "-floodlight"
    label = "Floodlight"
    device_type = DeviceType.LIGHT


class NeolinkFloodlightTasks(OnOffAbility):
    """Toggles the camera's scheduled/motion floodlight tasks, not the light itself."""

    ability = Ability.FLOODLIGHT_TASKS
    topic_role = "floodlight_tasks_control"
    suffix = "-floodlight-tasks"
    label = "Floodlight Tasks"


class NeolinkPir(OnOffAbility):
    ability = Ability.PIR
    topic_role = "pir_control"
    suffix = "-pir"
    label = "PIR"


# ordered so that the longest suffix is matched first
ABILITY_DEVICES: tuple[type[OnOffAbility], ...] = (
    NeolinkFloodlightTasks,
    NeolinkFloodlight,
    NeolinkSiren,
    NeolinkPir,
)
CHILD_ABILITIES: frozenset[Ability] = frozenset(cls.ability for cls in ABILITY_DEVICES)


def ability_device_for(native_id: str) -> type[OnOffAbility] | None:
    """Sub-adapter class whose nativeId suffix matches, if any."""
    for cls in ABILITY_DEVICES:
        if native_id.endswith(cls.suffix):
            return cls
    return None
