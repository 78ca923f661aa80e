"""Host device adapters: the camera and its on/off child devices."""

from .abilities import (
    ABILITY_DEVICES,
    NeolinkFloodlight,
    NeolinkFloodlightTasks,
    NeolinkPir,
    NeolinkSiren,
    OnOffAbility,
    ability_device_for,
    required_capabilities,
)
from .camera import NeolinkCamera, ptz_direction

__all__ = [
    "ABILITY_DEVICES",
    "NeolinkCamera",
    "NeolinkFloodlight",
    "NeolinkFloodlightTasks",
    "NeolinkPir",
    "NeolinkSiren",
    "OnOffAbility",
    "ability_device_for",
    "ptz_direction",
    "required_capabilities",
]
