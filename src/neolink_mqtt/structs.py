"""Core data structures and typing protocols for the neolink adapter."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, field_validator


class Ability(StrEnum):
    """Optional camera capability toggled per device in configuration."""

    BATTERY = "Battery"
    SIREN = "Siren"
    FLOODLIGHT = "Floodlight"
    FLOODLIGHT_TASKS = "FloodlightTasks"
    PIR = "PIR"


class PtzAxis(StrEnum):
    PAN = "Pan"
    TILT = "Tilt"
    ZOOM = "Zoom"


class Capability(StrEnum):
    """Host interface names a camera device exposes."""

    CAMERA = "Camera"
    VIDEO_CAMERA_CONFIGURATION = "VideoCameraConfiguration"
    MOTION_SENSOR = "MotionSensor"
    SETTINGS = "Settings"
    ONLINE = "Online"
    REBOOT = "Reboot"
    PAN_TILT_ZOOM = "PanTiltZoom"
    DEVICE_PROVIDER = "DeviceProvider"
    BATTERY = "Battery"
    ON_OFF = "OnOff"


class DeviceType(StrEnum):
    CAMERA = "Camera"
    SIREN = "Siren"
    LIGHT = "Light"
    SWITCH = "Switch"


class ConnectionStatus(StrEnum):
    """Broker session state owned by MqttSession."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class CameraConnection(StrEnum):
    """Camera reachability as reported by neolink on the status topic."""

    UNKNOWN = "unknown"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class BrokerCredentials(BaseModel):
    """Resolved broker endpoint and login handed to an MqttSession."""

    host: str
    username: str | None = None
    password: str | None = None

    @field_validator("host")
    @classmethod
    def _host_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "broker host must not be empty"
            raise ValueError(msg)
        return value


class PtzCommand(BaseModel):
    """Host PTZ request; only the first nonzero axis is honoured."""

    pan: float = 0
    tilt: float = 0
    zoom: float = 0
    preset: str | int | None = None


class CameraState(BaseModel):
    """Host-visible state of one camera.

    Mutated only by the camera adapter from MQTT status messages.
    """

    motion_detected: bool = False
    battery_level: float | None = None
    connection: CameraConnection = CameraConnection.UNKNOWN
    last_preview: str | None = None
    ptz_presets: str | None = None


@dataclass
class DeviceManifest:
    """Description of a device handed to the host's device registry."""

    native_id: str
    name: str
    type: DeviceType
    interfaces: list[Capability]
    provider_native_id: str | None = None
    info: dict[str, Any] = field(default_factory=dict)


class DeviceRegistryProtocol(Protocol):
    """Host API for registering devices and reporting their state."""

    async def register_or_update_device(self, manifest: DeviceManifest) -> None:
        """Create the device, or update its name/type/interfaces."""
        ...

    async def on_devices_changed(self, provider_native_id: str, manifests: list[DeviceManifest]) -> None:
        """Replace the set of child devices owned by a provider device."""
        ...

    def on_device_event(self, native_id: str, event: str, value: object) -> None:
        """Report a state change of a registered device."""
        ...


class SettingsStorageProtocol(Protocol):
    """Host key/value storage scoped to one device or the plugin."""

    def get_setting(self, key: str) -> str | None: ...

    def put_setting(self, key: str, value: str | None) -> None: ...


class SharedBrokerSettingsProtocol(Protocol):
    """Settings of the host's own MQTT integration (host-wide broker)."""

    async def get_settings(self) -> Mapping[str, object]: ...


class MediaFactoryProtocol(Protocol):
    """Turns raw image bytes into the host's media representation."""

    async def create_media_object(self, data: bytes, mime_type: str) -> Any: ...


class HostProtocol(Protocol):
    """Bundle of host collaborators the provider is constructed with."""

    device_registry: DeviceRegistryProtocol
    media: MediaFactoryProtocol
    shared_broker: SharedBrokerSettingsProtocol | None

    def storage_for(self, native_id: str | None) -> SettingsStorageProtocol:
        """Return the settings storage of a device, or of the plugin when native_id is None."""
        ...
