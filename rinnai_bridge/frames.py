"""Wire framing for the Rinnai Touch TCP session.

Both directions share one layout::

    <marker:1><sequence:6 decimal digits><JSON payload>

Inbound status frames carry either a single object or an array of group
objects (``[{"SYST": {...}}, {"HGOM": {...}}]``) that together form the
appliance state tree. Outbound commands carry a single-field update object.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from . import constants
from .core import deep_merge
from .errors import MalformedFrame

_HEADER_LENGTH = 1 + constants.SEQUENCE_DIGITS


@dataclass(frozen=True)
class StatusSnapshot:
    """Immutable view of one decoded status frame."""

    fingerprint: str
    sequence: int
    state: Mapping[str, Any]
    observed_at: datetime


def fingerprint(raw: bytes) -> str:
    return hashlib.sha1(raw).hexdigest()


def next_sequence(previous: int) -> int:
    """Sequence number for the next outbound frame (wraps 255 -> 0)."""

    return (previous + 1) % constants.SEQUENCE_MODULUS


def decode_status_frame(
    raw: bytes, *, observed_at: Optional[datetime] = None
) -> StatusSnapshot:
    """Decode a raw status frame.

    Raises:
        MalformedFrame: if the header or the JSON body cannot be decoded.
    """

    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedFrame(f"status frame is not valid UTF-8: {exc}") from exc

    if len(text) <= _HEADER_LENGTH:
        raise MalformedFrame(f"status frame too short ({len(text)} chars)")

    digits = text[1:_HEADER_LENGTH]
    if not digits.isdigit():
        raise MalformedFrame(f"invalid sequence number {digits!r}")
    sequence = int(digits)
    if sequence >= constants.SEQUENCE_MODULUS:
        raise MalformedFrame(f"sequence number {sequence} out of range")

    try:
        body = json.loads(text[_HEADER_LENGTH:])
    except json.JSONDecodeError as exc:
        raise MalformedFrame(f"status payload is not valid JSON: {exc}") from exc

    return StatusSnapshot(
        fingerprint=fingerprint(raw),
        sequence=sequence,
        state=merge_groups(body),
        observed_at=observed_at or datetime.now(timezone.utc),
    )


def merge_groups(body: Any) -> Dict[str, Any]:
    """Collapse the group objects of a status payload into one tree."""

    groups = body if isinstance(body, list) else [body]
    state: Dict[str, Any] = {}
    for index, group in enumerate(groups):
        if not isinstance(group, Mapping):
            raise MalformedFrame(
                f"status group {index} is {type(group).__name__}, expected an object"
            )
        deep_merge(state, group)
    return state


def encode_frame(sequence: int, payload: str) -> bytes:
    if not 0 <= sequence < constants.SEQUENCE_MODULUS:
        raise ValueError(f"sequence {sequence} out of range")
    header = f"{constants.FRAME_MARKER}{sequence:0{constants.SEQUENCE_DIGITS}d}"
    return f"{header}{payload}".encode("utf-8")


def encode_update(update: Mapping[str, Any]) -> str:
    """Serialise a nested update object the way the module expects it."""

    return json.dumps(update, separators=(",", ":"))
