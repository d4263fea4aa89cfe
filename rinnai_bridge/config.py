"""Configuration loader for rinnai-bridge."""

from __future__ import annotations

import logging
import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from . import constants

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplianceConfig:
    host: Optional[str] = None
    port: Optional[int] = None
    auto_reconnect: bool = True
    connect_timeout_seconds: float = 10.0
    idle_timeout_seconds: float = constants.DEFAULT_IDLE_TIMEOUT_SECONDS
    reconnect_delay_seconds: float = constants.DEFAULT_RECONNECT_DELAY_SECONDS  # module refuses immediate reconnects
    keepalive_enabled: bool = True
    keepalive_interval_seconds: float = constants.DEFAULT_KEEPALIVE_INTERVAL_SECONDS
    handshake_failure_threshold: int = 3
    discovery_port: int = constants.DISCOVERY_PORT
    discovery_timeout_seconds: float = 30.0


@dataclass(slots=True)
class CommandConfig:
    confirm_timeout_seconds: float = constants.DEFAULT_CONFIRM_TIMEOUT_SECONDS
    confirm_interval_seconds: float = constants.DEFAULT_CONFIRM_INTERVAL_SECONDS


@dataclass(slots=True)
class MQTTConfig:
    host: Optional[str] = None
    port: int = constants.DEFAULT_MQTT_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive: int = 15
    root_topic: str = constants.DEFAULT_ROOT_TOPIC
    discovery_prefix: str = constants.DEFAULT_DISCOVERY_PREFIX
    discovery_enabled: bool = True
    republish_interval_seconds: float = 60.0
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 60.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class BridgeConfig:
    appliance: ApplianceConfig
    commands: CommandConfig
    mqtt: MQTTConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


# Environment variables recognised in container deployments.
ENV_OVERRIDES: Mapping[str, tuple[str, str]] = {
    "RINNAI_HOST": ("appliance", "host"),
    "RINNAI_PORT": ("appliance", "port"),
    "MQTT_HOST": ("mqtt", "host"),
    "MQTT_PORT": ("mqtt", "port"),
    "MQTT_USERNAME": ("mqtt", "username"),
    "MQTT_PASSWORD": ("mqtt", "password"),
    "LOG_LEVEL": ("logging", "level"),
}


def _optional(parser: ConfigParser, section: str, option: str) -> Optional[str]:
    value = parser.get(section, option, fallback="").strip()
    return value or None


def _optional_int(parser: ConfigParser, section: str, option: str) -> Optional[int]:
    value = _optional(parser, section, option)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Ignoring invalid integer %s.%s=%r", section, option, value)
        return None


def _float(parser: ConfigParser, section: str, option: str, default: float) -> float:
    try:
        return parser.getfloat(section, option, fallback=default)
    except ValueError:
        LOGGER.warning("Ignoring invalid number for %s.%s", section, option)
        return default


def _int(parser: ConfigParser, section: str, option: str, default: int) -> int:
    try:
        return parser.getint(section, option, fallback=default)
    except ValueError:
        LOGGER.warning("Ignoring invalid integer for %s.%s", section, option)
        return default


def apply_env_overrides(
    parser: ConfigParser, environ: Optional[Mapping[str, str]] = None
) -> None:
    env = os.environ if environ is None else environ
    for variable, (section, option) in ENV_OVERRIDES.items():
        value = env.get(variable)
        if value:
            parser.set(section, option, value)


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> BridgeConfig:
    """Load configuration from disk, applying defaults and environment overrides."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    appliance_defaults = ApplianceConfig()
    command_defaults = CommandConfig()
    mqtt_defaults = MQTTConfig()

    parser = ConfigParser(interpolation=None)
    parser.read_dict(
        {
            "appliance": {
                "host": "",
                "port": "",
                "auto_reconnect": "true",
                "connect_timeout_seconds": str(appliance_defaults.connect_timeout_seconds),
                "idle_timeout_seconds": str(appliance_defaults.idle_timeout_seconds),
                "reconnect_delay_seconds": str(appliance_defaults.reconnect_delay_seconds),
                "keepalive_enabled": "true",
                "keepalive_interval_seconds": str(appliance_defaults.keepalive_interval_seconds),
                "handshake_failure_threshold": str(appliance_defaults.handshake_failure_threshold),
                "discovery_port": str(constants.DISCOVERY_PORT),
                "discovery_timeout_seconds": str(appliance_defaults.discovery_timeout_seconds),
            },
            "commands": {
                "confirm_timeout_seconds": str(command_defaults.confirm_timeout_seconds),
                "confirm_interval_seconds": str(command_defaults.confirm_interval_seconds),
            },
            "mqtt": {
                "host": "",
                "port": str(constants.DEFAULT_MQTT_PORT),
                "keepalive": str(mqtt_defaults.keepalive),
                "root_topic": constants.DEFAULT_ROOT_TOPIC,
                "discovery_prefix": constants.DEFAULT_DISCOVERY_PREFIX,
                "discovery_enabled": "true",
                "republish_interval_seconds": str(mqtt_defaults.republish_interval_seconds),
                "reconnect_initial_seconds": str(mqtt_defaults.reconnect_initial_seconds),
                "reconnect_max_seconds": str(mqtt_defaults.reconnect_max_seconds),
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    apply_env_overrides(parser, environ)

    appliance = ApplianceConfig(
        host=_optional(parser, "appliance", "host"),
        port=_optional_int(parser, "appliance", "port"),
        auto_reconnect=parser.getboolean("appliance", "auto_reconnect", fallback=True),
        connect_timeout_seconds=max(
            0.1,
            _float(parser, "appliance", "connect_timeout_seconds",
                   appliance_defaults.connect_timeout_seconds),
        ),
        idle_timeout_seconds=max(
            0.1,
            _float(parser, "appliance", "idle_timeout_seconds",
                   appliance_defaults.idle_timeout_seconds),
        ),
        reconnect_delay_seconds=max(
            0.0,
            _float(parser, "appliance", "reconnect_delay_seconds",
                   appliance_defaults.reconnect_delay_seconds),
        ),
        keepalive_enabled=parser.getboolean("appliance", "keepalive_enabled", fallback=True),
        keepalive_interval_seconds=max(
            1.0,
            _float(parser, "appliance", "keepalive_interval_seconds",
                   appliance_defaults.keepalive_interval_seconds),
        ),
        handshake_failure_threshold=max(
            1,
            _int(parser, "appliance", "handshake_failure_threshold",
                 appliance_defaults.handshake_failure_threshold),
        ),
        discovery_port=_int(parser, "appliance", "discovery_port", constants.DISCOVERY_PORT),
        discovery_timeout_seconds=max(
            0.1,
            _float(parser, "appliance", "discovery_timeout_seconds",
                   appliance_defaults.discovery_timeout_seconds),
        ),
    )

    commands = CommandConfig(
        confirm_timeout_seconds=max(
            0.0,
            _float(parser, "commands", "confirm_timeout_seconds",
                   command_defaults.confirm_timeout_seconds),
        ),
        confirm_interval_seconds=max(
            0.01,
            _float(parser, "commands", "confirm_interval_seconds",
                   command_defaults.confirm_interval_seconds),
        ),
    )

    mqtt = MQTTConfig(
        host=_optional(parser, "mqtt", "host"),
        port=_int(parser, "mqtt", "port", constants.DEFAULT_MQTT_PORT),
        username=_optional(parser, "mqtt", "username"),
        password=_optional(parser, "mqtt", "password"),
        keepalive=max(1, _int(parser, "mqtt", "keepalive", mqtt_defaults.keepalive)),
        root_topic=parser.get("mqtt", "root_topic").strip("/") or constants.DEFAULT_ROOT_TOPIC,
        discovery_prefix=parser.get("mqtt", "discovery_prefix").strip("/")
        or constants.DEFAULT_DISCOVERY_PREFIX,
        discovery_enabled=parser.getboolean("mqtt", "discovery_enabled", fallback=True),
        republish_interval_seconds=max(
            1.0,
            _float(parser, "mqtt", "republish_interval_seconds",
                   mqtt_defaults.republish_interval_seconds),
        ),
        reconnect_initial_seconds=max(
            0.5,
            _float(parser, "mqtt", "reconnect_initial_seconds",
                   mqtt_defaults.reconnect_initial_seconds),
        ),
        reconnect_max_seconds=max(
            1.0,
            _float(parser, "mqtt", "reconnect_max_seconds",
                   mqtt_defaults.reconnect_max_seconds),
        ),
    )

    log_path = _optional(parser, "logging", "path")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path).expanduser() if log_path else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=_int(parser, "health", "port", 0),
    )

    return BridgeConfig(
        appliance=appliance,
        commands=commands,
        mqtt=mqtt,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: BridgeConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
