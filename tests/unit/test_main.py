"""
Unit tests for the standalone runner's config parsing and lifecycle.
"""

import asyncio
import signal
import sys

import pytest

from neolink_mqtt import const
from neolink_mqtt.main import NeolinkRunner, parse_cli, parse_config
from neolink_mqtt.provider import NeolinkProvider

RUNTIME_ENV = (
    "NEOLINK_MOTION_TIMEOUT",
    "NEOLINK_SESSION_RENEW_SECONDS",
    "NEOLINK_METRICS_PORT",
    "NEOLINK_PERF_THRESHOLD_MS",
)

CONFIG = """
mqtt:
  host: mqtt://broker.local:1883
  username: neo
  password: secret
cameras:
  - name: GarageCam
    abilities: [Siren, Floodlight]
    ptz: Pan
    motion_timeout: 30
  - name: FrontDoor
    display_name: Front Door
    enabled: false
  - abilities: [Battery]
"""


class TestParseConfig:
    """Tests for parse_config function"""

    def test_broker_and_cameras(self, tmp_path):
        """Test broker settings and enabled cameras are read"""
        config_file = tmp_path / "cameras.yaml"
        config_file.write_text(CONFIG)

        broker, cameras = parse_config(config_file)

        assert broker == {"mqttHost": "mqtt://broker.local:1883", "mqttUsername": "neo", "mqttPassword": "secret"}
        assert cameras == [
            ("GarageCam", {"abilities": ["Siren", "Floodlight"], "ptz": ["Pan"], "motionTimeout": 30}),
        ]

    def test_non_mapping_root(self, tmp_path):
        """Test a YAML list at the root yields nothing"""
        config_file = tmp_path / "cameras.yaml"
        config_file.write_text("- just\n- a list\n")

        assert parse_config(config_file) == ({}, [])

    def test_invalid_yaml_raises(self, tmp_path):
        """Test unparseable YAML is logged and re-raised"""
        config_file = tmp_path / "cameras.yaml"
        config_file.write_text("cameras: [unclosed\n")

        with pytest.raises(Exception):  # noqa: B017, PT011
            _ = parse_config(config_file)


class TestNeolinkRunner:
    """Tests for NeolinkRunner lifecycle"""

    @pytest.mark.asyncio
    async def test_start_creates_cameras_until_stopped(self, tmp_path, mqtt_clients, settle):
        """Test start() sets up cameras and stop request shuts the provider down"""
        config_file = tmp_path / "cameras.yaml"
        config_file.write_text(CONFIG)
        runner = NeolinkRunner(config_file)

        task = asyncio.create_task(runner.start())
        await settle(20)
        assert len(runner.provider.cameras) == 1
        camera = next(iter(runner.provider.cameras.values()))
        assert camera.name == "Garage Cam"
        assert mqtt_clients[0].kwargs["username"] == "neo"

        runner.request_stop(signal.SIGTERM)
        await asyncio.wait_for(task, timeout=1)
        assert runner.provider.cameras == {}
        mqtt_clients[0].__aexit__.assert_awaited()


@pytest.fixture
def runtime_env(monkeypatch):
    """Blank the runtime variables and re-read constants once the test is done."""
    for name in RUNTIME_ENV:
        monkeypatch.setenv(name, "")
    yield monkeypatch
    monkeypatch.undo()
    const.reload_env()


class TestParseCli:
    """Tests for parse_cli function"""

    def test_env_file_sets_runtime_settings(self, tmp_path, runtime_env):
        """Test values from --env reach the constants and the metrics port default"""
        env_file = tmp_path / "neolink.env"
        env_file.write_text(
            "NEOLINK_MOTION_TIMEOUT=7\n"
            "NEOLINK_SESSION_RENEW_SECONDS=600\n"
            "NEOLINK_METRICS_PORT=9109\n"
            "NEOLINK_PERF_THRESHOLD_MS=900\n"
        )
        runtime_env.setattr(sys, "argv", ["neolink-mqtt", "--config", "cameras.yaml", "--env", str(env_file)])

        args = parse_cli()

        assert args.metrics_port == 9109
        assert const.MOTION_TIMEOUT_SECONDS == 7.0
        assert const.SESSION_RENEW_SECONDS == 600.0
        assert const.NEOLINK_PERF_THRESHOLD_MS == 900

    def test_metrics_port_flag_wins(self, tmp_path, runtime_env):
        """Test an explicit --metrics-port is kept over the environment"""
        env_file = tmp_path / "neolink.env"
        env_file.write_text("NEOLINK_METRICS_PORT=9109\n")
        runtime_env.setattr(
            sys,
            "argv",
            ["neolink-mqtt", "--config", "cameras.yaml", "--env", str(env_file), "--metrics-port", "9200"],
        )

        assert parse_cli().metrics_port == 9200

    @pytest.mark.asyncio
    async def test_reloaded_timeouts_used_by_new_objects(self, runtime_env, provider):
        """Test cameras and providers pick up reloaded values"""
        runtime_env.setenv("NEOLINK_MOTION_TIMEOUT", "7")
        runtime_env.setenv("NEOLINK_SESSION_RENEW_SECONDS", "600")
        const.reload_env()

        native_id = await provider.create_device("GarageCam")
        assert provider.cameras[native_id].motion_timeout == 7.0
        assert NeolinkProvider(provider.host).session_renew_seconds == 600.0
