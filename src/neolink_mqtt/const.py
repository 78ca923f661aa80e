import os

from neolink_mqtt import __version__

__all__ = [
    "BATTERY_POLL_SECONDS",
    "DEFAULT_CAMERA_NAME",
    "MOTION_TIMEOUT_SECONDS",
    "NEOLINK_DEBUG",
    "NEOLINK_LOG_FORMAT",
    "NEOLINK_LOG_HUMAN_OUTPUT",
    "NEOLINK_LOG_JSON_FILE",
    "NEOLINK_METRICS_PORT",
    "NEOLINK_MQTT_CLIENT_ID",
    "NEOLINK_MQTT_CONN_DELAY",
    "NEOLINK_MQTT_CONN_DELAY_MAX",
    "NEOLINK_MQTT_HOST",
    "NEOLINK_MQTT_PASS",
    "NEOLINK_MQTT_USER",
    "NEOLINK_PERF_THRESHOLD_MS",
    "NEOLINK_PERF_TRACKING",
    "NEOLINK_TOPIC_ROOT",
    "NEOLINK_VERSION",
    "PTZ_SPEED",
    "SESSION_RENEW_SECONDS",
    "SNAPSHOT_GRACE_SECONDS",
    "SNAPSHOT_MIME_TYPE",
    "YES_ANSWER",
    "reload_env",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
NEOLINK_VERSION: str = __version__
NEOLINK_TOPIC_ROOT: str = "neolink"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name, "")
    return int(raw) if raw.isdigit() else default


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).casefold() in YES_ANSWER


# Broker fallback when neither plugin overrides nor the host's shared broker are set
NEOLINK_MQTT_HOST: str | None = os.environ.get("NEOLINK_MQTT_HOST") or None
NEOLINK_MQTT_USER: str | None = os.environ.get("NEOLINK_MQTT_USER") or None
NEOLINK_MQTT_PASS: str | None = os.environ.get("NEOLINK_MQTT_PASS") or None
NEOLINK_MQTT_CLIENT_ID: str = os.environ.get("NEOLINK_MQTT_CLIENT_ID", "neolink_mqtt")
# Seconds between reconnect attempts after the broker drops us, doubled up to the max
NEOLINK_MQTT_CONN_DELAY: float = _env_float("NEOLINK_MQTT_CONN_DELAY", 5.0)
NEOLINK_MQTT_CONN_DELAY_MAX: float = _env_float("NEOLINK_MQTT_CONN_DELAY_MAX", 60.0)

MOTION_TIMEOUT_SECONDS: float = _env_float("NEOLINK_MOTION_TIMEOUT", 20.0)
BATTERY_POLL_SECONDS: float = _env_float("NEOLINK_BATTERY_POLL_SECONDS", 60 * 60)
SNAPSHOT_GRACE_SECONDS: float = _env_float("NEOLINK_SNAPSHOT_GRACE_SECONDS", 2.0)
SESSION_RENEW_SECONDS: float = _env_float("NEOLINK_SESSION_RENEW_SECONDS", 30 * 60)
# neolink accepts a single direction per command at a fixed speed
PTZ_SPEED: float = 15.0
SNAPSHOT_MIME_TYPE: str = "image/jpeg"

DEFAULT_CAMERA_NAME: str = "Neolink Camera"

NEOLINK_DEBUG: bool = _env_flag("NEOLINK_DEBUG", "0")

# Logging Configuration, applied when a logger is first created
NEOLINK_LOG_FORMAT: str = os.environ.get("NEOLINK_LOG_FORMAT", "human")  # "json", "human", or "both"
NEOLINK_LOG_JSON_FILE: str | None = os.environ.get("NEOLINK_LOG_JSON_FILE") or None
NEOLINK_LOG_HUMAN_OUTPUT: str = os.environ.get("NEOLINK_LOG_HUMAN_OUTPUT", "stdout")

# Performance Instrumentation
NEOLINK_PERF_TRACKING: bool = _env_flag("NEOLINK_PERF_TRACKING", "true")
NEOLINK_PERF_THRESHOLD_MS: int = _env_int("NEOLINK_PERF_THRESHOLD_MS", 250) or 250

NEOLINK_METRICS_PORT: int | None = _env_int("NEOLINK_METRICS_PORT", None)


def reload_env() -> None:
    """Re-read the runtime settings, e.g. after a .env file was loaded.

    The logging settings are not re-read: handlers already exist by then.
    """
    global NEOLINK_MQTT_HOST, NEOLINK_MQTT_USER, NEOLINK_MQTT_PASS, NEOLINK_MQTT_CLIENT_ID
    global NEOLINK_MQTT_CONN_DELAY, NEOLINK_MQTT_CONN_DELAY_MAX
    global MOTION_TIMEOUT_SECONDS, BATTERY_POLL_SECONDS, SNAPSHOT_GRACE_SECONDS, SESSION_RENEW_SECONDS
    global NEOLINK_DEBUG, NEOLINK_PERF_TRACKING, NEOLINK_PERF_THRESHOLD_MS, NEOLINK_METRICS_PORT
    NEOLINK_MQTT_HOST = os.environ.get("NEOLINK_MQTT_HOST") or None
    NEOLINK_MQTT_USER = os.environ.get("NEOLINK_MQTT_USER") or None
    NEOLINK_MQTT_PASS = os.environ.get("NEOLINK_MQTT_PASS") or None
    NEOLINK_MQTT_CLIENT_ID = os.environ.get("NEOLINK_MQTT_CLIENT_ID", "neolink_mqtt")
    NEOLINK_MQTT_CONN_DELAY = _env_float("NEOLINK_MQTT_CONN_DELAY", 5.0)
    NEOLINK_MQTT_CONN_DELAY_MAX = _env_float("NEOLINK_MQTT_CONN_DELAY_MAX", 60.0)
    MOTION_TIMEOUT_SECONDS = _env_float("NEOLINK_MOTION_TIMEOUT", 20.0)
    BATTERY_POLL_SECONDS = _env_float("NEOLINK_BATTERY_POLL_SECONDS", 60 * 60)
    SNAPSHOT_GRACE_SECONDS = _env_float("NEOLINK_SNAPSHOT_GRACE_SECONDS", 2.0)
    SESSION_RENEW_SECONDS = _env_float("NEOLINK_SESSION_RENEW_SECONDS", 30 * 60)
    NEOLINK_DEBUG = _env_flag("NEOLINK_DEBUG", "0")
    NEOLINK_PERF_TRACKING = _env_flag("NEOLINK_PERF_TRACKING", "true")
    NEOLINK_PERF_THRESHOLD_MS = _env_int("NEOLINK_PERF_THRESHOLD_MS", 250) or 250
    NEOLINK_METRICS_PORT = _env_int("NEOLINK_METRICS_PORT", None)
