"""Builds the semantic configuration view from the raw state tree."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from .core import lookup_path
from .schema import (
    SERVICES,
    SYSTEM_SCHEMA,
    SYSTEM_SERVICE,
    FieldDefinition,
    service_schema,
)
from .state_store import StatusStore

LOGGER = logging.getLogger(__name__)


def translate(
    state: Mapping[str, Any],
    schema: Mapping[str, FieldDefinition],
    *,
    service: str | None = None,
) -> Dict[str, Any]:
    """Decode every field of ``schema`` found in ``state``.

    When ``service`` is given only fields applicable to it are included.
    """

    result: Dict[str, Any] = {}
    for name, definition in schema.items():
        if service is not None and not definition.applies_to(service):
            continue
        result[name] = definition.decode(lookup_path(state, definition.segments))
    return result


class ConfigTranslator:
    """Read-only configuration view over a :class:`StatusStore`.

    ``config()`` performs no I/O; it re-derives the view from whatever
    snapshot is current, so it is safe to call as often as needed.
    """

    def __init__(self, store: StatusStore) -> None:
        self._store = store

    def config(self) -> Dict[str, Dict[str, Any]]:
        """Return ``{"system": {...}, <service>: {...}}`` for installed services.

        Raises:
            NotConnected: no status has been received from a live session.
            MalformedFrame: the state tree does not match the schema shape.
        """

        state = self._store.current().state
        system = translate(state, SYSTEM_SCHEMA)
        config: Dict[str, Dict[str, Any]] = {SYSTEM_SERVICE: system}

        for service in SERVICES:
            if system.get(service.presence_field) is not True:
                continue
            config[service.name] = translate(
                state, service_schema(service.code), service=service.name
            )

        LOGGER.debug("Derived configuration for services: %s", ", ".join(config))
        return config
