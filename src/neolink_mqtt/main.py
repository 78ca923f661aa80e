"""Standalone runner: drive neolink cameras from a YAML file without a host application."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from collections.abc import Mapping
from pathlib import Path
from typing import cast

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop is not available on Windows
    uvloop = None

import dotenv
import yaml

from neolink_mqtt import const, metrics
from neolink_mqtt.const import NEOLINK_VERSION
from neolink_mqtt.correlation import correlation_context, ensure_correlation_id
from neolink_mqtt.host import InMemoryHost, StaticSharedBroker
from neolink_mqtt.logging_abstraction import get_logger
from neolink_mqtt.provider import MQTT_HOST_KEY, MQTT_PASSWORD_KEY, MQTT_USERNAME_KEY, NeolinkProvider

logger = get_logger(__name__)

# aiomqtt/paho are chatty at DEBUG
logging.getLogger("mqtt").setLevel(logging.ERROR)

# YAML key -> camera storage key
_CAMERA_KEYS: dict[str, str] = {
    "display_name": "name",
    "abilities": "abilities",
    "ptz": "ptz",
    "motion_timeout": "motionTimeout",
}


def _parse_camera(index: int, camera_data: Mapping[str, object]) -> tuple[str, dict[str, object]] | None:
    """Return (camera_name, settings) for one camera entry, or None if it is unusable."""
    name_value = camera_data.get("name")
    if not isinstance(name_value, str) or not name_value.strip():
        logger.warning("Skipping camera #%d: no 'name'", index)
        return None
    enabled = camera_data.get("enabled", True)
    if enabled is False or (isinstance(enabled, str) and enabled.casefold() == "false"):
        logger.debug("Skipping disabled camera: %s", name_value)
        return None

    settings: dict[str, object] = {}
    for yaml_key, storage_key in _CAMERA_KEYS.items():
        value = camera_data.get(yaml_key)
        if value is None:
            continue
        if storage_key in ("abilities", "ptz") and isinstance(value, str):
            value = [value]
        settings[storage_key] = value
    return name_value.strip(), settings


def parse_config(config_file: Path) -> tuple[dict[str, str], list[tuple[str, dict[str, object]]]]:
    """Parse the runner YAML into broker settings and camera entries.

    Raises:
        Exception: the file cannot be read or is not valid YAML

    """
    logger.debug("Parsing config file: %s", config_file)
    try:
        with config_file.open() as f:
            raw_config = cast("Mapping[str, object] | None", yaml.safe_load(f))
    except Exception:
        logger.exception("Failed to parse config file: %s", config_file)
        raise

    broker: dict[str, str] = {}
    cameras: list[tuple[str, dict[str, object]]] = []
    if not isinstance(raw_config, Mapping):
        logger.warning("Invalid config structure: expected mapping at root")
        return broker, cameras

    mqtt_data = raw_config.get("mqtt")
    if isinstance(mqtt_data, Mapping):
        for yaml_key, storage_key in (
            ("host", MQTT_HOST_KEY),
            ("username", MQTT_USERNAME_KEY),
            ("password", MQTT_PASSWORD_KEY),
        ):
            value = mqtt_data.get(yaml_key)
            if value is not None:
                broker[storage_key] = str(value)

    cameras_data = raw_config.get("cameras")
    if isinstance(cameras_data, list):
        for index, camera_data in enumerate(cameras_data):
            if isinstance(camera_data, Mapping):
                parsed = _parse_camera(index, cast("Mapping[str, object]", camera_data))
                if parsed:
                    cameras.append(parsed)

    logger.info("Parsed config: %d cameras", len(cameras))
    return broker, cameras


class NeolinkRunner:
    """Runs a NeolinkProvider against the in-memory host until signalled."""

    lp: str = "runner:"

    def __init__(self, config_file: Path, shared_broker: Mapping[str, object] | None = None) -> None:
        self.config_file: Path = config_file
        self.host: InMemoryHost = InMemoryHost(
            shared_broker=StaticSharedBroker(shared_broker) if shared_broker else None,
        )
        self.provider: NeolinkProvider = NeolinkProvider(self.host)
        self._stop_event: asyncio.Event = asyncio.Event()

    def request_stop(self, signum: int) -> None:
        logger.info("%s Intercepted signal: %s", self.lp, signal.Signals(signum).name)
        self._stop_event.set()

    async def start(self) -> None:
        lp = f"{self.lp}start:"
        _ = ensure_correlation_id()
        broker, cameras = parse_config(self.config_file)
        for key, value in broker.items():
            await self.provider.put_setting(key, value)

        for camera_name, settings in cameras:
            try:
                native_id = await self.provider.create_device(camera_name, **settings)
            except ValueError as err:
                logger.warning("%s Skipping camera %s: %s", lp, camera_name, err)
                continue
            logger.info("%s Camera ready", lp, extra={"camera": camera_name, "native_id": native_id})

        try:
            _ = await self._stop_event.wait()
        finally:
            await self.provider.stop()


def _enable_debug_logging() -> None:
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("neolink_mqtt"):
            package_logger = logging.getLogger(name)
            package_logger.setLevel(logging.DEBUG)
            for handler in package_logger.handlers:
                handler.setLevel(logging.DEBUG)


def parse_cli() -> argparse.Namespace:
    """Parse CLI arguments for the runner process."""
    parser = argparse.ArgumentParser(description="neolink MQTT camera bridge")
    _ = parser.add_argument("--config", help="Path to the cameras YAML file", required=True, type=Path)
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument(
        "--metrics-port",
        help="Expose Prometheus metrics on this port (default: NEOLINK_METRICS_PORT)",
        default=None,
        type=int,
    )
    _ = parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    args = parser.parse_args()

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
            const.reload_env()
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})

    if args.metrics_port is None:
        args.metrics_port = const.NEOLINK_METRICS_PORT
    if args.debug or const.NEOLINK_DEBUG:
        _enable_debug_logging()
        logger.info("Debug mode enabled")
    return args


async def _run(runner: NeolinkRunner) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, runner.request_stop, signum)
    await runner.start()


def main() -> None:
    """Run the neolink MQTT bridge entry point."""
    with correlation_context():
        logger.info("Starting neolink MQTT bridge", extra={"version": NEOLINK_VERSION})
        args = parse_cli()
        if args.metrics_port:
            metrics.start_metrics_server(args.metrics_port)

        config_file = args.config.expanduser().resolve()
        if not config_file.exists():
            logger.error("Configuration file not found", extra={"config_path": str(config_file)})
            raise SystemExit(1)

        runner = NeolinkRunner(config_file)
        try:
            if uvloop is not None:
                uvloop.run(_run(runner))
            else:
                asyncio.run(_run(runner))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
            raise SystemExit(1) from e
        else:
            logger.info("neolink MQTT bridge stopped gracefully")


if __name__ == "__main__":
    main()
