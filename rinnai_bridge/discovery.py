"""UDP discovery of the Rinnai Touch WiFi module.

The module periodically broadcasts an announcement datagram on port 50000.
The payload starts with ``Rinnai_NBW2_Module`` and carries the TCP control
port as a big-endian 16-bit value at bytes 32-33. The sender address is the
module's address.

Usage:
    host, port = await ApplianceDiscovery().discover()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from . import constants
from .errors import DiscoveryTimeout

LOGGER = logging.getLogger(__name__)

Address = Tuple[str, int]


def parse_announcement(data: bytes, sender: str) -> Optional[Address]:
    """Extract ``(host, port)`` from an announcement, or ``None`` if foreign."""

    if not data.startswith(constants.DISCOVERY_MAGIC):
        return None
    offset = constants.DISCOVERY_PORT_OFFSET
    if len(data) < offset + 2:
        LOGGER.debug("Ignoring truncated announcement from %s (%d bytes)", sender, len(data))
        return None
    port = int.from_bytes(data[offset : offset + 2], "big")
    return sender, port


class _AnnouncementProtocol(asyncio.DatagramProtocol):
    def __init__(self, result: asyncio.Future[Address]) -> None:
        self._result = result

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        LOGGER.debug("Received datagram %r from %s:%s", data[:48], addr[0], addr[1])
        found = parse_announcement(data, addr[0])
        if found is not None and not self._result.done():
            self._result.set_result(found)

    def error_received(self, exc: Exception) -> None:
        LOGGER.error("UDP discovery socket error: %s", exc)
        if not self._result.done():
            self._result.set_exception(exc)


class ApplianceDiscovery:
    """One-shot listener for the module's announcement broadcast."""

    def __init__(
        self,
        *,
        port: int = constants.DISCOVERY_PORT,
        timeout: float = 30.0,
        bind_host: str = "0.0.0.0",
    ) -> None:
        self.port = port
        self.timeout = timeout
        self.bind_host = bind_host

    async def discover(self) -> Address:
        """Wait for the first valid announcement.

        Raises:
            DiscoveryTimeout: no announcement within ``timeout`` seconds.
            OSError: the discovery port could not be bound.
        """

        loop = asyncio.get_running_loop()
        result: asyncio.Future[Address] = loop.create_future()

        transport, _ = await loop.create_datagram_endpoint(
            lambda: _AnnouncementProtocol(result),
            local_addr=(self.bind_host, self.port),
            allow_broadcast=True,
        )
        LOGGER.info("Discovery started on %s:%d", self.bind_host, self.port)

        try:
            host, port = await asyncio.wait_for(result, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise DiscoveryTimeout(
                f"no Rinnai Touch module announced itself within {self.timeout:.0f}s"
            ) from exc
        finally:
            transport.close()

        LOGGER.info("Found Rinnai Touch module on %s:%d", host, port)
        return host, port
