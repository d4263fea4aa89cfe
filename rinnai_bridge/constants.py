"""Constants used across the rinnai-bridge package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "rinnai-bridge"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME
DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

# Appliance wire protocol
DISCOVERY_PORT = 50000
DISCOVERY_MAGIC = b"Rinnai_NBW2_Module"
DISCOVERY_PORT_OFFSET = 32
HANDSHAKE_TOKEN = b"*HELLO*"
FRAME_MARKER = "N"
SEQUENCE_DIGITS = 6
SEQUENCE_MODULUS = 256
# The module ignores an empty update object, so it doubles as a no-op.
KEEPALIVE_PAYLOAD = "{}"

DEFAULT_IDLE_TIMEOUT_SECONDS = 5.0
DEFAULT_RECONNECT_DELAY_SECONDS = 5.0
DEFAULT_KEEPALIVE_INTERVAL_SECONDS = 60.0
DEFAULT_CONFIRM_TIMEOUT_SECONDS = 5.0
DEFAULT_CONFIRM_INTERVAL_SECONDS = 1.0

# MQTT
DEFAULT_MQTT_PORT = 1883
DEFAULT_ROOT_TOPIC = "rinnaitouch"
DEFAULT_DISCOVERY_PREFIX = "homeassistant"
DEVICE_IDENTIFIER = "rinnai_touch_proxy"
DEVICE_NAME = "Rinnai Touch Proxy"
