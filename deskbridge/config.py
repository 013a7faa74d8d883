"""Configuration handling for deskbridge."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Any, Optional

import yaml

from . import registers as REG
from .errors import ConfigError
from .models import Preset


def _get_env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except Exception:
        return default


def _get_env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except Exception:
        return default


def _field_names(cls) -> set[str]:
    return {f.name for f in fields(cls)}


def _default_port() -> str:
    return os.getenv("DESKBRIDGE_PORT", "COM1" if os.name == "nt" else "/dev/ttyUSB0")


@dataclass
class SerialConfig:
    """Serial line settings. ``timeout`` is the per-transaction deadline."""

    port: str = field(default_factory=_default_port)
    baudrate: int = field(default_factory=lambda: _get_env_int("DESKBRIDGE_BAUD", 57600))
    parity: str = "N"
    stopbits: int = 1
    bytesize: int = 8
    timeout: float = field(default_factory=lambda: _get_env_float("DESKBRIDGE_TIMEOUT", 0.5))
    slave_id: int = field(default_factory=lambda: _get_env_int("DESKBRIDGE_SLAVE_ID", 1))


@dataclass
class MqttConfig:
    host: str = field(default_factory=lambda: os.getenv("DESKBRIDGE_MQTT_HOST", "localhost"))
    port: Optional[int] = field(
        default_factory=lambda: _get_env_int("DESKBRIDGE_MQTT_PORT", 0) or None
    )
    transport: str = field(
        default_factory=lambda: os.getenv("DESKBRIDGE_MQTT_TRANSPORT", "tls").lower()
    )
    username: Optional[str] = field(default_factory=lambda: os.getenv("DESKBRIDGE_MQTT_USERNAME"))
    password: Optional[str] = field(default_factory=lambda: os.getenv("DESKBRIDGE_MQTT_PASSWORD"))
    keepalive: int = 60

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        return 8883 if self.transport == "tls" else 1883


def _default_presets() -> list[Preset]:
    return [Preset(n, f"Preset {n}", button) for n, button in REG.DEFAULT_PRESET_BUTTONS.items()]


@dataclass
class Config:
    """Runtime configuration for the desk bridge."""

    id: str = field(default_factory=lambda: os.getenv("DESKBRIDGE_ID", "desk"))
    name: str = "Desk"
    prefix: str = "desk"
    hass_prefix: str = "homeassistant"
    serial: SerialConfig = field(default_factory=SerialConfig)
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    presets: list[Preset] = field(default_factory=_default_presets)

    # Polling and movement inference
    poll_interval: float = 30.0
    move_poll_interval: float = 0.5
    stable_reads: int = 2
    max_move_seconds: float = 60.0

    # Noise tolerance
    poll_retries: int = 3
    max_discard: int = 256
    unhealthy_threshold: int = 5

    # Raw register value -> inches
    height_scale: float = 0.1
    height_offset: float = 0.0

    # Reconnection backoff, seconds
    serial_backoff_initial: float = 1.0
    serial_backoff_max: float = 30.0
    mqtt_backoff_max: float = 60.0

    @property
    def topic_base(self) -> str:
        return f"{self.prefix}/{self.id}" if self.prefix else self.id

    def preset(self, number: int) -> Preset:
        for preset in self.presets:
            if preset.number == number:
                return preset
        raise ConfigError(f"preset {number} is not configured")

    def validate(self) -> "Config":
        if not self.id:
            raise ConfigError("id must not be empty")
        if self.mqtt.transport not in ("tcp", "tls"):
            raise ConfigError(f"unknown mqtt transport {self.mqtt.transport!r}")
        numbers = [p.number for p in self.presets]
        if len(set(numbers)) != len(numbers) or any(not 1 <= n <= 4 for n in numbers):
            raise ConfigError("presets must be numbered 1-4 without duplicates")
        if self.stable_reads < 1 or self.poll_retries < 1:
            raise ConfigError("stable_reads and poll_retries must be at least 1")
        if self.max_discard < 0 or self.unhealthy_threshold < 1:
            raise ConfigError("max_discard must be >= 0 and unhealthy_threshold >= 1")
        if self.serial.timeout <= 0:
            raise ConfigError("serial timeout must be positive")
        return self

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls().validate()

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Config":
        """Build a configuration from a parsed settings document."""
        if not isinstance(raw, dict):
            raise ConfigError("configuration must be a mapping")
        raw = dict(raw)
        cfg = cls()
        try:
            serial_raw = dict(raw.pop("serial", None) or {})
            if "serial_port" in raw:
                serial_raw.setdefault("port", raw.pop("serial_port"))
            for key, value in serial_raw.items():
                if key not in _field_names(SerialConfig):
                    raise ConfigError(f"unknown serial option {key!r}")
                setattr(cfg.serial, key, type(getattr(cfg.serial, key))(value))

            mqtt_raw = dict(raw.pop("mqtt", None) or {})
            credentials = mqtt_raw.pop("credentials", None)
            if credentials:
                mqtt_raw.setdefault("username", credentials["username"])
                mqtt_raw.setdefault("password", credentials["password"])
            for key, value in mqtt_raw.items():
                if key not in _field_names(MqttConfig):
                    raise ConfigError(f"unknown mqtt option {key!r}")
                if key == "transport":
                    value = str(value).lower()
                elif key in ("port", "keepalive") and value is not None:
                    value = int(value)
                setattr(cfg.mqtt, key, value)

            if "presets" in raw:
                cfg.presets = [
                    Preset(
                        number=int(p["number"]),
                        name=str(p.get("name", f"Preset {p['number']}")),
                        button=int(p.get("button", REG.DEFAULT_PRESET_BUTTONS.get(int(p["number"]), 0))),
                    )
                    for p in raw.pop("presets") or []
                ]

            for key, value in raw.items():
                if key not in _field_names(cls) or key in ("serial", "mqtt", "presets"):
                    raise ConfigError(f"unknown option {key!r}")
                current = getattr(cfg, key)
                setattr(cfg, key, type(current)(value) if current is not None else value)
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"invalid configuration: {exc}") from exc
        return cfg.validate()

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        try:
            with open(path, "r", encoding="utf-8") as fp:
                raw = yaml.safe_load(fp) or {}
        except OSError as exc:
            raise ConfigError(f"failed to open settings {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to load settings {path}: {exc}") from exc
        return cls.from_dict(raw)
