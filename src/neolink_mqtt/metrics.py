"""Prometheus metrics for the MQTT session."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    start_http_server,
)

neolink_mqtt_publish_total: Final = Counter(  # type: ignore[assignment]
    "neolink_mqtt_publish_total",
    "Total publishes written to the broker",
    ["outcome"],
)

neolink_mqtt_publish_suppressed_total: Final = Counter(  # type: ignore[assignment]
    "neolink_mqtt_publish_suppressed_total",
    "Retained publishes skipped because the payload matched the last one sent",
)

neolink_mqtt_reconnect_total: Final = Counter(  # type: ignore[assignment]
    "neolink_mqtt_reconnect_total",
    "Total broker (re)connection attempts",
    ["reason"],
)

neolink_mqtt_message_total: Final = Counter(  # type: ignore[assignment]
    "neolink_mqtt_message_total",
    "Inbound broker messages by dispatch result",
    ["matched"],
)

neolink_mqtt_connection_state: Final = Gauge(  # type: ignore[assignment]
    "neolink_mqtt_connection_state",
    "Current broker connection state",
    ["state"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int) -> None:
    """Start the Prometheus HTTP exporter (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_publish(outcome: str) -> None:
    neolink_mqtt_publish_total.labels(outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_publish_suppressed() -> None:
    neolink_mqtt_publish_suppressed_total.inc()  # type: ignore[no-untyped-call]


def record_reconnect(reason: str) -> None:
    neolink_mqtt_reconnect_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_message(matched: bool) -> None:
    neolink_mqtt_message_total.labels(matched="true" if matched else "false").inc()  # type: ignore[no-untyped-call]


def record_connection_state(state: str) -> None:
    """Set the gauge to 1 for the current state and 0 for the others."""
    for s in ("disconnected", "connecting", "connected"):
        neolink_mqtt_connection_state.labels(state=s).set(1 if s == state else 0)  # type: ignore[no-untyped-call]
