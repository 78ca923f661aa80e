"""neolink MQTT topic names.

Every topic is derived from the camera's neolink name:
``neolink/<camera>/<status|query|control>/<role>``. The camera connection
topic is the bare ``neolink/<camera>/status``.
"""

from __future__ import annotations

from dataclasses import astuple, dataclass, fields

from neolink_mqtt.const import NEOLINK_TOPIC_ROOT


@dataclass(frozen=True, slots=True)
class TopicSet:
    """All topics for one camera, keyed by role."""

    connection_status: str
    battery_status: str
    motion_status: str
    disconnected_status: str
    preview_status: str
    ptz_preset_status: str

    battery_query: str
    preview_query: str
    ptz_preset_query: str

    ptz_control: str
    ptz_preset_control: str
    floodlight_control: str
    floodlight_tasks_control: str
    siren_control: str
    reboot_control: str
    led_control: str
    ir_control: str
    pir_control: str

    def as_dict(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def status_topics(self) -> tuple[str, ...]:
        """Topics the bridge publishes to (inbound for the adapter)."""
        return (
            self.connection_status,
            self.battery_status,
            self.motion_status,
            self.disconnected_status,
            self.preview_status,
            self.ptz_preset_status,
        )

    def __iter__(self):
        return iter(astuple(self))


def topics_for(camera_name: str) -> TopicSet:
    """Build the TopicSet for a camera.

    Raises:
        ValueError: camera_name is empty

    """
    if not camera_name:
        msg = "camera name must not be empty"
        raise ValueError(msg)

    base = f"{NEOLINK_TOPIC_ROOT}/{camera_name}"
    status = f"{base}/status"
    query = f"{base}/query"
    control = f"{base}/control"
    return TopicSet(
        connection_status=status,
        battery_status=f"{status}/battery_level",
        motion_status=f"{status}/motion",
        disconnected_status=f"{status}/disconnected",
        preview_status=f"{status}/preview",
        ptz_preset_status=f"{status}/ptz/preset",
        battery_query=f"{query}/battery",
        preview_query=f"{query}/preview",
        ptz_preset_query=f"{query}/ptz/preset",
        ptz_control=f"{control}/ptz",
        ptz_preset_control=f"{control}/preset",
        floodlight_control=f"{control}/floodlight",
        floodlight_tasks_control=f"{control}/floodlight_tasks",
        siren_control=f"{control}/siren",
        reboot_control=f"{control}/reboot",
        led_control=f"{control}/led",
        ir_control=f"{control}/ir",
        pir_control=f"{control}/pir",
    )
