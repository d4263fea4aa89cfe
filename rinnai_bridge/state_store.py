"""Holds the latest decoded appliance status."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .core import lookup_path
from .errors import NotConnected
from .frames import StatusSnapshot, decode_status_frame
from .schema import SERVICES, SYSTEM_SCHEMA, service_schema

LOGGER = logging.getLogger(__name__)


class StatusStore:
    """Caches the most recent :class:`StatusSnapshot`.

    The connection's receive path is the only writer. Snapshots are replaced
    wholesale, so readers always see one complete frame and never a partial
    update.
    """

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        is_connected: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._is_connected = is_connected or (lambda: True)
        self._snapshot: Optional[StatusSnapshot] = None

    @property
    def snapshot(self) -> Optional[StatusSnapshot]:
        return self._snapshot

    @property
    def sequence(self) -> Optional[int]:
        snapshot = self._snapshot
        return snapshot.sequence if snapshot is not None else None

    def ingest(self, raw: bytes) -> bool:
        """Decode ``raw`` and swap it in.

        Returns ``True`` when the frame differs from the previous one.

        Raises:
            MalformedFrame: the frame could not be decoded or its tree does
                not have the shape the schemas address; the previous
                snapshot is left in place.
        """

        previous = self._snapshot
        snapshot = decode_status_frame(raw, observed_at=self._clock())
        check_shape(snapshot.state)
        self._snapshot = snapshot

        changed = previous is None or previous.fingerprint != snapshot.fingerprint
        if changed:
            LOGGER.debug("Status changed (sequence=%d)", snapshot.sequence)
        return changed

    def current(self) -> StatusSnapshot:
        """Return the current snapshot of a connected session."""

        snapshot = self._snapshot
        if snapshot is None or not self._is_connected():
            raise NotConnected("not connected to Rinnai Touch module")
        return snapshot

    def status(self) -> Dict[str, Any]:
        """Return a copy of the merged state tree."""

        return copy.deepcopy(dict(self.current().state))

    def clear(self) -> None:
        self._snapshot = None


def check_shape(state: Dict[str, Any]) -> None:
    """Walk every schema path through ``state``.

    Raises:
        MalformedFrame: a group or section is a scalar instead of an object.
    """

    schemas = [SYSTEM_SCHEMA, *(service_schema(service.code) for service in SERVICES)]
    for schema in schemas:
        for definition in schema.values():
            lookup_path(state, definition.segments)
