"""In-memory host collaborators.

Used by the standalone runner to operate cameras without a home-automation
host, and by the tests to observe what adapters report.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from neolink_mqtt.logging_abstraction import get_logger
from neolink_mqtt.structs import DeviceManifest, SharedBrokerSettingsProtocol

logger = get_logger(__name__)


class MemorySettingsStorage:
    """Key/value settings of one device, kept in a dict."""

    def __init__(self, values: Mapping[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})

    def get_setting(self, key: str) -> str | None:
        return self.values.get(key)

    def put_setting(self, key: str, value: str | None) -> None:
        if value is None:
            _ = self.values.pop(key, None)
        else:
            self.values[key] = value


class LoggingDeviceRegistry:
    """Keeps registered devices and their last reported state, logging every change."""

    lp: str = "registry:"

    def __init__(self) -> None:
        self.devices: dict[str, DeviceManifest] = {}
        self.children: dict[str, list[DeviceManifest]] = {}
        self.states: dict[str, dict[str, object]] = {}
        self.events: list[tuple[str, str, object]] = []

    async def register_or_update_device(self, manifest: DeviceManifest) -> None:
        self.devices[manifest.native_id] = manifest
        logger.info(
            "%s Device registered: %s",
            self.lp,
            manifest.name,
            extra={"native_id": manifest.native_id, "interfaces": [str(i) for i in manifest.interfaces]},
        )

    async def on_devices_changed(self, provider_native_id: str, manifests: list[DeviceManifest]) -> None:
        self.children[provider_native_id] = list(manifests)
        for manifest in manifests:
            self.devices[manifest.native_id] = manifest
        logger.debug(
            "%s Child devices of %s: %s",
            self.lp,
            provider_native_id,
            [m.name for m in manifests],
        )

    def on_device_event(self, native_id: str, event: str, value: object) -> None:
        self.events.append((native_id, event, value))
        self.states.setdefault(native_id, {})[event] = value
        logger.info("%s %s %s = %r", self.lp, native_id, event, value)


class RawMediaFactory:
    """Media 'objects' are just (mime_type, bytes) tuples."""

    async def create_media_object(self, data: bytes, mime_type: str) -> tuple[str, bytes]:
        return mime_type, data


class StaticSharedBroker:
    """Host-wide broker settings from a fixed mapping."""

    def __init__(self, settings: Mapping[str, object] | None = None) -> None:
        self.settings: dict[str, object] = dict(settings or {})

    async def get_settings(self) -> Mapping[str, object]:
        return dict(self.settings)


@dataclass
class InMemoryHost:
    device_registry: LoggingDeviceRegistry = field(default_factory=LoggingDeviceRegistry)
    media: RawMediaFactory = field(default_factory=RawMediaFactory)
    shared_broker: SharedBrokerSettingsProtocol | None = None
    storages: dict[str | None, MemorySettingsStorage] = field(default_factory=dict)

    def storage_for(self, native_id: str | None) -> MemorySettingsStorage:
        """Settings storage of a device, or of the plugin itself for None."""
        storage = self.storages.get(native_id)
        if storage is None:
            storage = self.storages[native_id] = MemorySettingsStorage()
        return storage
