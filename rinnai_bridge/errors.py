"""Exception hierarchy shared by the appliance session and command engine."""

from __future__ import annotations

from typing import Optional


class RinnaiError(RuntimeError):
    """Base class for all appliance related failures."""


class SchemaError(RinnaiError):
    """Raised when a field definition is structurally invalid."""


class DiscoveryTimeout(RinnaiError):
    """Raised when no appliance announcement was observed in time."""


class NotConnected(RinnaiError):
    """Raised when status or commands are requested without a live session."""


class HandshakeRejected(RinnaiError):
    """Raised when the first payload of a session is not the handshake token."""


class MalformedFrame(RinnaiError):
    """Raised when a status frame cannot be decoded into a state tree."""


class CommandValidationError(RinnaiError):
    """Raised when a command request is rejected before anything is sent."""

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.service = service
        self.field = field


class ServiceUnavailable(CommandValidationError):
    """The requested service is unknown or not installed on the appliance."""


class InvalidCommand(CommandValidationError):
    """The requested field does not exist, is read-only or does not apply."""


class InvalidValue(CommandValidationError):
    """The requested value has no protocol code for the field."""
