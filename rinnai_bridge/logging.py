"""Logging configuration helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> None:
    """Configure root logging handlers.

    Parameters
    ----------
    level:
        Log level name, e.g. "INFO". Numeric levels 0-6 (``LOG_LEVEL=3`` meaning
        info) are accepted too.
    log_path:
        Optional filesystem path for a file handler. When absent, only console logging is configured.
    log_network:
        When true, keep the verbose MQTT and HTTP library loggers at the root level
        and log every frame exchanged with the module.
    """

    logging.captureWarnings(True)

    for handler in list(logging.getLogger().handlers):
        logging.getLogger().removeHandler(handler)

    logging.basicConfig(level=resolve_level(level), format=LOG_FORMAT)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(file_handler)

    if log_network:
        logging.getLogger("rinnai_bridge.connection").setLevel(logging.DEBUG)
    else:
        logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
        logging.getLogger("paho").setLevel(logging.WARNING)
        logging.getLogger("rinnai_bridge.adapters.mqtt").setLevel(logging.INFO)


# 0 silly, 1 trace, 2 debug, 3 info, 4 warn, 5 error, 6 fatal
_NUMERIC_LEVELS = {
    0: logging.DEBUG,
    1: logging.DEBUG,
    2: logging.DEBUG,
    3: logging.INFO,
    4: logging.WARNING,
    5: logging.ERROR,
    6: logging.CRITICAL,
}


def resolve_level(level: str) -> int:
    text = str(level).strip()
    if text.isdigit():
        return _NUMERIC_LEVELS.get(int(text), logging.INFO)
    value = getattr(logging, text.upper(), None)
    return value if isinstance(value, int) else logging.INFO
