"""Home Assistant MQTT discovery payloads for the bridge entities."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

from . import constants

_MODE_TO_HA = {"cooling": "cool", "cooling_heating": "heat_cool", "heating": "heat"}


def _lookup_template(mapping: Dict[Any, str]) -> str:
    pairs = ", ".join(
        f"{json.dumps(key)}: {json.dumps(value)}" for key, value in mapping.items()
    )
    return "{% set lookup = {" + pairs + "} %}"


def _command(service: str, field: str, value: str) -> str:
    return json.dumps([service, field, value])


def build_discovery_entities(
    root_topic: str = constants.DEFAULT_ROOT_TOPIC,
    prefix: str = constants.DEFAULT_DISCOVERY_PREFIX,
) -> List[Tuple[str, Dict[str, Any]]]:
    """Return ``(topic, payload)`` pairs describing every exposed entity.

    Entities share one device block and use ``<root>/online`` for availability,
    so Home Assistant marks them unavailable when the bridge's will fires.
    """

    online_topic = f"{root_topic}/online"
    config_topic = f"{root_topic}/config"
    command_topic = f"{root_topic}/command"

    base: Dict[str, Any] = {
        "device": {
            "identifiers": [constants.DEVICE_IDENTIFIER],
            "name": constants.DEVICE_NAME,
        },
        "availability_topic": online_topic,
        "payload_available": "true",
        "payload_not_available": "false",
    }

    status_sensor = {
        "name": "Status",
        "unique_id": f"{constants.DEVICE_IDENTIFIER}_status",
        "state_topic": online_topic,
        "value_template": '{{ "online" if value == "true" else "offline" }}',
        "json_attributes_topic": config_topic,
    }

    reverse_cycle_switch = {
        "name": "Reverse Cycle",
        "unique_id": f"{constants.DEVICE_IDENTIFIER}_reverse_cycle_operating_state",
        "device_class": "switch",
        "icon": "mdi:power",
        "state_topic": f"{config_topic}/reverseCycle/operatingState",
        "state_off": "off",
        "state_on": "on",
        "command_topic": command_topic,
        "payload_off": _command("reverseCycle", "operatingState", "off"),
        "payload_on": _command("reverseCycle", "operatingState", "on"),
        "optimistic": False,
    }

    ha_to_mode = {value: key for key, value in _MODE_TO_HA.items()}
    zone_climate = {
        "name": "Zone Control",
        "unique_id": f"{constants.DEVICE_IDENTIFIER}_zone_common",
        "modes": list(ha_to_mode),
        "mode_state_topic": f"{config_topic}/reverseCycle/reverseCycleMode",
        "mode_state_template": _lookup_template(_MODE_TO_HA) + " {{ lookup[value] }}",
        "mode_command_topic": command_topic,
        "mode_command_template": _lookup_template(ha_to_mode)
        + '["reverseCycle", "reverseCycleMode", "{{ lookup[value] }}"]',
        "temperature_state_topic": f"{config_topic}/reverseCycle/setTemp",
        "temperature_command_topic": command_topic,
        "temperature_command_template": '["reverseCycle", "setTemp", "{{ value | int }}"]',
        "temperature_unit": "C",
        "temp_step": 1,
        "precision": 1.0,
        "min_temp": 8,
        "max_temp": 30,
    }

    entities = (
        ("sensor", status_sensor),
        ("switch", reverse_cycle_switch),
        ("climate", zone_climate),
    )
    return [
        (f"{prefix}/{component}/{payload['unique_id']}/config", {**payload, **base})
        for component, payload in entities
    ]
