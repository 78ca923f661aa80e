"""Neolink camera bridge adapter (MQTT control and status)."""

__version__ = "0.3.0"
