"""High level client for a single Rinnai Touch module."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .commands import CommandExecutor
from .config import ApplianceConfig, CommandConfig
from .connection import ApplianceConnection
from .discovery import ApplianceDiscovery
from .translator import ConfigTranslator

LOGGER = logging.getLogger(__name__)


class RinnaiTouch:
    """Combines the session, configuration view and command engine.

    This is the surface the MQTT bridge (and the CLI) talk to::

        appliance = RinnaiTouch(ApplianceConfig(host="192.168.1.20", port=27847))
        await appliance.connect()
        appliance.config()["system"]["operatingMode"]
        await appliance.command("system", "operatingMode", "heating")
    """

    def __init__(
        self,
        config: Optional[ApplianceConfig] = None,
        commands: Optional[CommandConfig] = None,
        *,
        discovery: Optional[ApplianceDiscovery] = None,
    ) -> None:
        command_config = commands or CommandConfig()
        self.connection = ApplianceConnection(config or ApplianceConfig(), discovery=discovery)
        self.translator = ConfigTranslator(self.connection.store)
        self.executor = CommandExecutor(
            self.connection,
            self.translator.config,
            confirm_timeout=command_config.confirm_timeout_seconds,
            confirm_interval=command_config.confirm_interval_seconds,
        )

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    async def connect(self, *, auto_reconnect: Optional[bool] = None) -> None:
        await self.connection.connect(auto_reconnect=auto_reconnect)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    def status(self) -> Dict[str, Any]:
        LOGGER.debug("Getting status")
        return self.connection.status()

    def config(self) -> Dict[str, Dict[str, Any]]:
        LOGGER.debug("Getting config")
        return self.translator.config()

    def send(self, payload: str) -> int:
        """Send a raw appliance-native payload without validation or confirmation."""

        return self.connection.send(payload)

    async def command(self, service: str, field: str, value: str) -> bool:
        return await self.executor.command(service, field, value)

    async def gas_heating(self, field: str, value: str) -> bool:
        return await self.command("gasHeating", field, value)

    async def evap_cooling(self, field: str, value: str) -> bool:
        return await self.command("evapCooling", field, value)

    async def addon_cooling(self, field: str, value: str) -> bool:
        return await self.command("addonCooling", field, value)

    async def reverse_cycle(self, field: str, value: str) -> bool:
        return await self.command("reverseCycle", field, value)
