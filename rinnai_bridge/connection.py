"""Session management for the Rinnai Touch TCP control connection.

The module accepts a single controlling session. This module owns that
session end to end: address discovery, the ``*HELLO*`` handshake, decoding of
the pushed status frames, keepalive, idle detection and reconnection.

Reconnection uses a fixed settle delay rather than exponential backoff; the
module refuses connections that arrive immediately after a disconnect.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from . import constants
from .config import ApplianceConfig
from .discovery import ApplianceDiscovery
from .errors import HandshakeRejected, MalformedFrame, NotConnected
from .frames import StatusSnapshot, encode_frame, next_sequence
from .state_store import StatusStore

LOGGER = logging.getLogger(__name__)

READ_SIZE = 65536

StatusListener = Callable[[StatusSnapshot], Awaitable[None] | None]
ConnectedCallback = Callable[[], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]


class SessionState(str, Enum):
    """Current state of the appliance session."""

    DISCONNECTED = "disconnected"
    """No socket is open."""

    DISCOVERING = "discovering"
    """Waiting for the module's UDP announcement."""

    CONNECTING = "connecting"
    """TCP connection in progress."""

    AWAITING_HANDSHAKE = "awaiting_handshake"
    """Socket open, waiting for the handshake token."""

    CONNECTED = "connected"
    """Handshake completed; status frames are being received."""

    CLOSING = "closing"
    """Socket teardown in progress."""

    RECONNECTING = "reconnecting"
    """Waiting out the settle delay before the next attempt."""


class ApplianceConnection:
    """Owns the single long-lived session with the module.

    Key responsibilities:
    - Resolve the module address (static or UDP discovery)
    - Perform the handshake and decode every subsequent status frame
    - Keep the session alive and reconnect after a fixed settle delay
    - Notify observers about status changes and connection lifecycle
    """

    def __init__(
        self,
        config: ApplianceConfig,
        *,
        discovery: Optional[ApplianceDiscovery] = None,
        store: Optional[StatusStore] = None,
    ) -> None:
        self._config = config
        self.host: Optional[str] = config.host
        self.port: Optional[int] = config.port
        self.store = store or StatusStore(is_connected=lambda: self.is_connected)
        self._discovery = discovery

        self._state = SessionState.DISCONNECTED
        self._auto_reconnect = config.auto_reconnect
        self._attempt = 1
        self._consecutive_failures = 0

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._supervisor_task: Optional[asyncio.Task[None]] = None
        self._keepalive_task: Optional[asyncio.Task[None]] = None
        self._ready: Optional[asyncio.Future[None]] = None
        self._stop_event = asyncio.Event()

        self._status_listeners: List[StatusListener] = []
        self._connected_callbacks: List[ConnectedCallback] = []
        self._error_callbacks: List[ErrorCallback] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED

    @property
    def auto_reconnect(self) -> bool:
        return self._auto_reconnect

    @property
    def attempt(self) -> int:
        """Connection attempt number since the last successful handshake."""
        return self._attempt

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def register_status_listener(self, callback: StatusListener) -> None:
        """Register callback invoked with each snapshot whose fingerprint changed."""
        self._status_listeners.append(callback)

    def remove_status_listener(self, callback: StatusListener) -> None:
        with contextlib.suppress(ValueError):
            self._status_listeners.remove(callback)

    def register_connected_callback(self, callback: ConnectedCallback) -> None:
        """Register callback invoked after every successful handshake."""
        self._connected_callbacks.append(callback)

    def register_error_callback(self, callback: ErrorCallback) -> None:
        """Register callback invoked once failures reach the configured threshold."""
        self._error_callbacks.append(callback)

    async def connect(self, *, auto_reconnect: Optional[bool] = None) -> None:
        """Establish the session and wait for the first status frame.

        Raises the failure of the first attempt (``DiscoveryTimeout``,
        ``HandshakeRejected``, ``OSError``...). When auto-reconnect is on the
        session keeps retrying in the background after such a failure.
        ``auto_reconnect`` defaults to the configured value on every call, so a
        reconnect after :meth:`disconnect` restores supervision.
        """

        if auto_reconnect is None:
            auto_reconnect = self._config.auto_reconnect
        self._auto_reconnect = auto_reconnect

        if self.is_connected and self.store.snapshot is not None:
            LOGGER.info("Already connected to %s", self._describe())
            return

        loop = asyncio.get_running_loop()
        if self._ready is None or self._ready.done():
            self._ready = loop.create_future()
            self._ready.add_done_callback(_consume_result)
        ready = self._ready

        if self._supervisor_task is None or self._supervisor_task.done():
            self._stop_event.clear()
            self._supervisor_task = asyncio.create_task(self._supervise())

        await asyncio.shield(ready)

    async def disconnect(self) -> None:
        """Tear the session down and suppress any pending reconnection.

        Safe to call repeatedly, including while a reconnect delay is pending.
        """

        self._auto_reconnect = False
        self._stop_event.set()

        writer = self._writer
        if writer is not None:
            writer.close()

        task = self._supervisor_task
        self._supervisor_task = None
        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        await self._cancel_keepalive()
        self._resolve_ready(NotConnected("disconnected before the session was established"))
        self._set_state(SessionState.DISCONNECTED)

    def status(self) -> dict[str, Any]:
        """Return the raw merged state tree of the live session."""

        return self.store.status()

    def send(self, payload: str) -> int:
        """Frame ``payload`` with the next sequence number and write it.

        Returns the sequence number used. No acknowledgement is awaited.

        Raises:
            NotConnected: the session is not connected, the socket is closing
                or no status frame has established the sequence yet.
        """

        writer = self._writer
        if not self.is_connected or writer is None or writer.is_closing():
            raise NotConnected("not connected to Rinnai Touch module")

        last_sequence = self.store.sequence
        if last_sequence is None:
            raise NotConnected("no status received yet; sequence number unknown")

        sequence = next_sequence(last_sequence)
        frame = encode_frame(sequence, payload)
        LOGGER.info("Sending command: %s", payload)
        LOGGER.debug("Sending data: %r", frame)

        try:
            writer.write(frame)
        except (OSError, RuntimeError) as exc:
            raise NotConnected(f"failed to write to {self._describe()}: {exc}") from exc
        return sequence

    # ------------------------------------------------------------------
    # Session supervision
    # ------------------------------------------------------------------
    async def _supervise(self) -> None:
        while True:
            try:
                await self._run_session()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._record_failure(exc)
            finally:
                await self._teardown()

            if not self._auto_reconnect or self._stop_event.is_set():
                break

            delay = self._config.reconnect_delay_seconds
            self._set_state(SessionState.RECONNECTING)
            LOGGER.info("Reconnecting to %s in %.1fs", self._describe(), delay)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            self._attempt += 1
            LOGGER.info(
                "Attempting reconnection to %s (attempt %d)", self._describe(), self._attempt
            )

        self._set_state(SessionState.DISCONNECTED)

    async def _run_session(self) -> None:
        await self._resolve_address()
        assert self.host is not None and self.port is not None

        self._set_state(SessionState.CONNECTING)
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port),
            timeout=self._config.connect_timeout_seconds,
        )
        self._reader = reader
        self._writer = writer
        LOGGER.info("Established connection to %s", self._describe())

        self._set_state(SessionState.AWAITING_HANDSHAKE)
        try:
            payload = await asyncio.wait_for(
                reader.read(READ_SIZE), timeout=self._config.idle_timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise HandshakeRejected(
                f"no handshake from {self._describe()} within "
                f"{self._config.idle_timeout_seconds:.1f}s"
            ) from exc

        LOGGER.debug("Received: %r", payload)
        if not payload:
            raise ConnectionError(f"{self._describe()} closed the connection during handshake")
        if not payload.startswith(constants.HANDSHAKE_TOKEN):
            raise HandshakeRejected(
                f"failed to connect to {self._describe()}: unexpected handshake {payload[:32]!r}"
            )

        await self._on_handshake()

        remainder = payload[len(constants.HANDSHAKE_TOKEN):]
        if remainder:
            await self._handle_status(remainder)

        await self._receive_loop(reader)

    async def _resolve_address(self) -> None:
        if self.host and self.port:
            return

        if self._discovery is None:
            self._discovery = ApplianceDiscovery(
                port=self._config.discovery_port,
                timeout=self._config.discovery_timeout_seconds,
            )
        self._set_state(SessionState.DISCOVERING)
        self.host, self.port = await self._discovery.discover()

    async def _on_handshake(self) -> None:
        self._set_state(SessionState.CONNECTED)
        self._attempt = 1
        self._consecutive_failures = 0
        LOGGER.info("Successfully connected to %s", self._describe())

        if self._config.keepalive_enabled:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())

        await self._notify("connected", self._connected_callbacks)

    async def _receive_loop(self, reader: asyncio.StreamReader) -> None:
        idle_timeout = self._config.idle_timeout_seconds
        while True:
            try:
                payload = await asyncio.wait_for(reader.read(READ_SIZE), timeout=idle_timeout)
            except asyncio.TimeoutError:
                LOGGER.warning(
                    "Closing connection to %s due to inactivity time out", self._describe()
                )
                return
            except OSError as exc:
                LOGGER.error("Unexpectedly disconnected from %s: %s", self._describe(), exc)
                return

            if not payload:
                LOGGER.info("Disconnected from %s", self._describe())
                return

            LOGGER.debug("Received data: %r", payload)
            if payload == constants.HANDSHAKE_TOKEN:
                continue
            await self._handle_status(payload)

    async def _handle_status(self, payload: bytes) -> None:
        try:
            changed = self.store.ingest(payload)
        except MalformedFrame as exc:
            LOGGER.error("Discarding malformed status frame: %s", exc)
            return

        self._resolve_ready()
        snapshot = self.store.snapshot
        if changed and snapshot is not None:
            await self._notify("status", self._status_listeners, snapshot)

    async def _keepalive_loop(self) -> None:
        interval = self._config.keepalive_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                self.send(constants.KEEPALIVE_PAYLOAD)
            except NotConnected as exc:
                LOGGER.debug("Skipping keepalive: %s", exc)
                return

    async def _record_failure(self, exc: Exception) -> None:
        self._consecutive_failures += 1
        LOGGER.error(
            "Connection attempt %d to %s failed: %s",
            self._attempt,
            self._describe(),
            exc,
        )
        self._resolve_ready(exc)

        if self._consecutive_failures >= self._config.handshake_failure_threshold:
            await self._notify("error", self._error_callbacks, exc)

    async def _teardown(self) -> None:
        writer = self._writer
        if writer is not None:
            self._set_state(SessionState.CLOSING)
        await self._cancel_keepalive()

        self._reader = None
        self._writer = None
        self.store.clear()
        if writer is not None:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()

        self._set_state(SessionState.DISCONNECTED)
        self._resolve_ready(
            ConnectionError(f"connection to {self._describe()} closed before status was received")
        )

    async def _cancel_keepalive(self) -> None:
        task = self._keepalive_task
        self._keepalive_task = None
        if task is None or task.done():
            return
        task.cancel()
        if task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        LOGGER.debug("Session state transition %s -> %s", self._state.value, state.value)
        self._state = state

    def _resolve_ready(self, exc: Optional[BaseException] = None) -> None:
        ready = self._ready
        if ready is None or ready.done():
            return
        if exc is None:
            ready.set_result(None)
        else:
            ready.set_exception(exc)

    async def _notify(self, kind: str, callbacks: list, *args: Any) -> None:
        for callback in list(callbacks):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("%s callback failed", kind.capitalize())

    def _describe(self) -> str:
        if self.host and self.port:
            return f"{self.host}:{self.port}"
        return "Rinnai Touch module"


def _consume_result(future: asyncio.Future[None]) -> None:
    # Mark the outcome as retrieved when no connect() call is waiting on it.
    if not future.cancelled():
        future.exception()
