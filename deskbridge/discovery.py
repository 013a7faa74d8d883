"""Home Assistant MQTT discovery payloads."""

from __future__ import annotations

import json

from . import __version__
from .adapter import OFF, ON, Topics
from .config import Config


def _availability(topics: Topics) -> list[dict[str, str]]:
    return [
        {
            "topic": topics.connected,
            "payload_available": ON,
            "payload_not_available": OFF,
        }
    ]


def discovery_messages(cfg: Config) -> dict[str, str]:
    """Return ``{config topic: JSON payload}`` for every exposed entity.

    Empty when ``hass_prefix`` is not set.
    """
    if not cfg.hass_prefix:
        return {}
    topics = Topics.from_config(cfg)
    prefix = cfg.hass_prefix
    device = {
        "identifiers": [f"deskbridge_{cfg.id}"],
        "name": cfg.name,
        "model": "Modbus desk controller",
        "sw_version": __version__,
    }
    entities: dict[str, dict] = {
        f"{prefix}/binary_sensor/{cfg.id}_connected/config": {
            "name": f"{cfg.name} Connected",
            "unique_id": f"{cfg.id}_connected",
            "device_class": "connectivity",
            "state_topic": topics.connected,
            "payload_on": ON,
            "payload_off": OFF,
        },
        f"{prefix}/sensor/{cfg.id}_height/config": {
            "name": f"{cfg.name} Height",
            "unique_id": f"{cfg.id}_height",
            "unit_of_measurement": "in",
            "state_topic": topics.height,
            "availability": _availability(topics),
            "icon": "mdi:human-male-height",
        },
        f"{prefix}/binary_sensor/{cfg.id}_moving/config": {
            "name": f"{cfg.name} Moving",
            "unique_id": f"{cfg.id}_moving",
            "device_class": "moving",
            "state_topic": topics.moving,
            "payload_on": ON,
            "payload_off": OFF,
            "availability": _availability(topics),
        },
    }
    for preset in cfg.presets:
        entities[f"{prefix}/button/{cfg.id}_preset_{preset.number}/config"] = {
            "name": f"{cfg.name} {preset.name}",
            "unique_id": f"{cfg.id}_preset_{preset.number}",
            "command_topic": topics.preset(preset.number),
            "availability": _availability(topics),
            "icon": f"mdi:numeric-{preset.number}-circle",
        }
    entities[f"{prefix}/button/{cfg.id}_refresh/config"] = {
        "name": f"{cfg.name} refresh",
        "unique_id": f"{cfg.id}_refresh",
        "command_topic": topics.refresh,
        "availability": _availability(topics),
        "icon": "mdi:refresh",
    }
    for payload in entities.values():
        payload["device"] = device
    return {topic: json.dumps(payload) for topic, payload in entities.items()}
