from __future__ import annotations

import textwrap

import pytest

from deskbridge.config import Config
from deskbridge.errors import ConfigError


def test_defaults_follow_the_controller() -> None:
    cfg = Config()
    assert cfg.serial.baudrate == 57600
    assert cfg.serial.slave_id == 1
    assert cfg.serial.timeout == 0.5
    assert [p.number for p in cfg.presets] == [1, 2, 3, 4]
    assert cfg.mqtt.transport == "tls"
    assert cfg.mqtt.effective_port == 8883


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DESKBRIDGE_PORT", "/dev/ttyS3")
    monkeypatch.setenv("DESKBRIDGE_BAUD", "19200")
    monkeypatch.setenv("DESKBRIDGE_MQTT_TRANSPORT", "TCP")
    monkeypatch.setenv("DESKBRIDGE_ID", "lab")
    cfg = Config.from_env()
    assert cfg.serial.port == "/dev/ttyS3"
    assert cfg.serial.baudrate == 19200
    assert cfg.mqtt.effective_port == 1883
    assert cfg.topic_base == "desk/lab"


def test_invalid_environment_value_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DESKBRIDGE_BAUD", "fast")
    assert Config().serial.baudrate == 57600


def test_from_yaml_accepts_original_settings_layout(tmp_path) -> None:
    path = tmp_path / "deskbridge.yaml"
    path.write_text(
        textwrap.dedent(
            """
            serial_port: /dev/ttyUSB1
            id: office
            name: Office Desk
            prefix: home/desks
            mqtt:
              host: broker.local
              transport: Tcp
              credentials:
                username: desk
                password: secret
            presets:
              - number: 1
                name: Sit
              - number: 2
                name: Stand
                button: 32
            poll_interval: 10
            max_discard: 128
            """
        )
    )
    cfg = Config.from_yaml(str(path))
    assert cfg.serial.port == "/dev/ttyUSB1"
    assert cfg.topic_base == "home/desks/office"
    assert cfg.mqtt.host == "broker.local"
    assert cfg.mqtt.effective_port == 1883
    assert (cfg.mqtt.username, cfg.mqtt.password) == ("desk", "secret")
    assert cfg.preset(1).button == 0x0004
    assert cfg.preset(2).button == 32
    assert cfg.poll_interval == 10.0
    assert cfg.max_discard == 128


def test_serial_section(tmp_path) -> None:
    cfg = Config.from_dict({"serial": {"port": "COM4", "baudrate": "9600", "timeout": 1}})
    assert cfg.serial.port == "COM4"
    assert cfg.serial.baudrate == 9600
    assert cfg.serial.timeout == 1.0


@pytest.mark.parametrize(
    "raw",
    [
        {"bogus": 1},
        {"serial": {"speed": 1}},
        {"mqtt": {"transport": "carrier-pigeon"}},
        {"presets": [{"number": 5}]},
        {"presets": [{"number": 1}, {"number": 1}]},
        {"presets": [{"name": "missing number"}]},
        {"poll_retries": 0},
        {"poll_interval": "soon"},
        {"preset": 3},
    ],
)
def test_invalid_settings(raw) -> None:
    with pytest.raises(ConfigError):
        Config.from_dict(raw)


def test_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        Config.from_yaml(str(tmp_path / "nope.yaml"))


def test_unknown_preset() -> None:
    with pytest.raises(ConfigError):
        Config().preset(7)
