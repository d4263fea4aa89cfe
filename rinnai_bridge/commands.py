"""Schema-driven command validation, encoding and confirmation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol

from .errors import (
    InvalidCommand,
    InvalidValue,
    MalformedFrame,
    NotConnected,
    ServiceUnavailable,
)
from .frames import encode_update
from .schema import (
    SERVICES_BY_NAME,
    SYSTEM_SERVICE,
    FieldDefinition,
    boundary_text,
    schema_for,
)

LOGGER = logging.getLogger(__name__)


class CommandSender(Protocol):
    """Minimal contract of the session used to transmit commands."""

    def send(self, payload: str) -> int:
        """Frame and write ``payload``; returns the sequence number used."""
        ...


ConfigSource = Callable[[], Mapping[str, Mapping[str, Any]]]


@dataclass(frozen=True, slots=True)
class CommandRequest:
    service: str
    field: str
    value: str

    def __str__(self) -> str:
        return f"{self.service}.{self.field}={self.value}"


class CommandExecutor:
    """Validates, sends and confirms single-field commands.

    Confirmation re-reads the derived configuration every
    ``confirm_interval`` seconds until the requested value shows up or
    ``confirm_timeout`` elapses. A timeout is an expected outcome when the
    module is slow to apply a change, so it is reported as ``False`` rather
    than raised.
    """

    def __init__(
        self,
        sender: CommandSender,
        config_source: ConfigSource,
        *,
        confirm_timeout: float = 5.0,
        confirm_interval: float = 1.0,
    ) -> None:
        self._sender = sender
        self._config_source = config_source
        self.confirm_timeout = confirm_timeout
        self.confirm_interval = confirm_interval

    def resolve(self, request: CommandRequest) -> tuple[FieldDefinition, str]:
        """Validate ``request`` and return its field definition and wire code.

        Raises:
            ServiceUnavailable: unknown service, or service not installed.
            InvalidCommand: unknown, read-only or inapplicable field.
            InvalidValue: value has no code in the field's code table.
        """

        service, name = request.service, request.field

        if service != SYSTEM_SERVICE:
            if service not in SERVICES_BY_NAME:
                raise ServiceUnavailable(
                    f"{service} service unavailable or not valid", service=service
                )
            installed = self._config_source()[SYSTEM_SERVICE].get(service)
            if installed is not True:
                raise ServiceUnavailable(
                    f"{service} service is not installed", service=service
                )

        schema = schema_for(service)
        if schema is None:
            raise ServiceUnavailable(f"{service} service has no command schema", service=service)

        definition = schema.get(name)
        if definition is None:
            raise InvalidCommand(f"unknown command {service}.{name}", service=service, field=name)
        if not definition.writable:
            raise InvalidCommand(f"{service}.{name} is read-only", service=service, field=name)
        if not definition.applies_to(service):
            raise InvalidCommand(
                f"{service}.{name} is not supported by {service}", service=service, field=name
            )

        code = definition.encode(request.value)
        if code is None:
            raise InvalidValue(
                f"value {request.value!r} not valid for {service}.{name}",
                service=service,
                field=name,
            )
        return definition, code

    async def command(self, service: str, field: str, value: str) -> bool:
        """Apply ``service.field = value`` and wait for the module to confirm it."""

        request = CommandRequest(service=service, field=field, value=value)
        LOGGER.info("Processing command: %s", request)

        definition, code = self.resolve(request)
        payload = encode_update(definition.update_payload(code))
        self._sender.send(payload)

        if await self._confirm(request):
            LOGGER.info("Confirmed command %s", request)
            return True

        LOGGER.error(
            "Failed to confirm command %s within %.1fs", request, self.confirm_timeout
        )
        return False

    async def _confirm(self, request: CommandRequest) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout

        while True:
            await asyncio.sleep(self.confirm_interval)
            observed = self._observe(request)
            if observed is not None and boundary_text(observed) == request.value:
                return True
            if loop.time() >= deadline:
                return False

    def _observe(self, request: CommandRequest) -> Optional[Any]:
        try:
            service_config = self._config_source().get(request.service)
        except (NotConnected, MalformedFrame) as exc:
            LOGGER.debug("Confirmation poll for %s skipped: %s", request, exc)
            return None
        if service_config is None:
            return None
        return service_config.get(request.field)
