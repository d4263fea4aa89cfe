import asyncio
import json
from typing import Any

import pytest
import pytest_asyncio

from rinnai_bridge.config import ApplianceConfig, CommandConfig
from rinnai_bridge.core import deep_merge


def build_frame(sequence: int, groups: Any) -> bytes:
    return f"N{sequence:06d}{json.dumps(groups)}".encode("utf-8")


def sample_groups() -> list[dict[str, Any]]:
    """State of a module with gas heating installed, heater off."""

    return [
        {
            "SYST": {
                "CFG": {
                    "MTSP": "N",
                    "TU": "C",
                    "CF": "2",
                    "ZA": "Living",
                    "ZB": "Bedrooms",
                    "VR": "0183",
                    "NC": "N",
                },
                "AVM": {"HG": "Y", "EC": "N", "CG": "N", "RA": "N"},
                "OSS": {"DY": "TUE", "TM": "16:05", "ST": "N", "MD": "H"},
                "FLT": {"AV": "N"},
            }
        },
        {
            "HGOM": {
                "CFG": {"ZUIS": "N", "ZAIS": "Y", "ZBIS": "Y", "ZCIS": "N", "ZDIS": "N"},
                "OOP": {"ST": "F", "FL": "16"},
                "GSO": {"SP": "22"},
                "ZUS": {"MT": "999"},
                "ZAO": {"SP": "21"},
                "ZAS": {"MT": "195"},
            }
        },
    ]


class FakeModule:
    """In-process stand-in for the Rinnai Touch WiFi module.

    Sends the handshake token followed by the current status frame to each
    client, records every command frame and (optionally) applies the update
    and pushes a fresh status frame back.
    """

    def __init__(
        self,
        groups: list[dict[str, Any]] | None = None,
        *,
        handshake: bytes = b"*HELLO*",
        apply_commands: bool = True,
        send_status: bool = True,
    ) -> None:
        self.groups = groups if groups is not None else sample_groups()
        self.handshake = handshake
        self.apply_commands = apply_commands
        self.send_status = send_status
        self.sequence = 7
        self.received: list[bytes] = []
        self.connections = 0
        self.connected = asyncio.Event()
        self.command_received = asyncio.Event()
        self._server: asyncio.AbstractServer | None = None
        self._writers: list[asyncio.StreamWriter] = []

    @property
    def port(self) -> int:
        assert self._server is not None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)

    async def stop(self) -> None:
        self.drop_clients()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    def frame(self) -> bytes:
        return build_frame(self.sequence, self.groups)

    def push_status(self) -> None:
        self.push_raw(self.frame())

    def push_raw(self, data: bytes) -> None:
        for writer in list(self._writers):
            writer.write(data)

    def drop_clients(self) -> None:
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    def apply(self, update: dict[str, Any]) -> None:
        for group in self.groups:
            shared = {key: value for key, value in update.items() if key in group}
            deep_merge(group, shared)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        if self.handshake:
            writer.write(self.handshake)
            await writer.drain()
        if self.send_status:
            await asyncio.sleep(0.01)
            writer.write(self.frame())
            await writer.drain()
        self.connected.set()

        try:
            while True:
                data = await reader.read(65536)
                if not data:
                    break
                self.received.append(data)
                self.command_received.set()
                text = data.decode("utf-8")
                self.sequence = int(text[1:7])
                body = json.loads(text[7:])
                if self.apply_commands and body:
                    self.apply(body)
                    writer.write(self.frame())
                    await writer.drain()
        except (ConnectionError, OSError, ValueError):
            pass
        finally:
            if writer in self._writers:
                self._writers.remove(writer)
            writer.close()


@pytest_asyncio.fixture
async def fake_module():
    module = FakeModule()
    await module.start()
    try:
        yield module
    finally:
        await module.stop()


@pytest.fixture
def appliance_config():
    def _create(module: FakeModule, **overrides: Any) -> ApplianceConfig:
        options: dict[str, Any] = {
            "host": "127.0.0.1",
            "port": module.port,
            "idle_timeout_seconds": 2.0,
            "reconnect_delay_seconds": 0.05,
            "connect_timeout_seconds": 2.0,
            "keepalive_enabled": False,
        }
        options.update(overrides)
        return ApplianceConfig(**options)

    return _create


@pytest.fixture
def fast_commands() -> CommandConfig:
    return CommandConfig(confirm_timeout_seconds=0.5, confirm_interval_seconds=0.05)


async def wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)
