"""Main application entry-point for rinnai-bridge."""

from __future__ import annotations

import asyncio
import logging
import os
from enum import Enum
from typing import Optional

from . import constants
from .adapters import MQTTClient, MQTTConnectionError
from .appliance import RinnaiTouch
from .bridge import MQTTBridge
from .config import BridgeConfig, load_config
from .health import HealthReporter, HealthServer
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


class AgentState(str, Enum):
    COLD_START = "cold_start"
    AWAITING_MQTT = "awaiting_mqtt"
    AWAITING_APPLIANCE = "awaiting_appliance"
    ACTIVE = "active"
    DEGRADED = "degraded"
    STOPPING = "stopping"


class RinnaiBridgeApp:
    """Coordinates application startup and shutdown.

    This class orchestrates the bridge lifecycle, managing:
    - MQTT connectivity (with exponential backoff on the initial connect)
    - The appliance session and its reconnection notifications
    - The MQTT bridge and the optional health endpoint
    - State machine transitions reported through the health endpoint

    The appliance and MQTT client can be injected for testing.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        appliance: Optional[RinnaiTouch] = None,
        mqtt_client: Optional[MQTTClient] = None,
    ) -> None:
        self._config = config or load_config()
        self._appliance = appliance or RinnaiTouch(
            self._config.appliance, self._config.commands
        )
        self._mqtt_client = mqtt_client
        self._bridge: Optional[MQTTBridge] = None
        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._state = AgentState.COLD_START
        self._state_detail: Optional[str] = None
        self._stopping = False
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def run(self) -> None:
        """Run the bridge until cancelled or :meth:`request_shutdown` is called."""

        self._shutdown_event = asyncio.Event()

        LOGGER.info("rinnai-bridge starting with config: %s", self._config.path)
        started = await self._start_services()
        if not started:
            LOGGER.warning("Service startup incomplete; running in degraded mode")

        try:
            await self._idle_loop()
        except asyncio.CancelledError:
            LOGGER.info("rinnai-bridge received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[BridgeConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("rinnai-bridge received shutdown signal")

    async def _idle_loop(self) -> None:
        LOGGER.info("rinnai-bridge supervisor active; awaiting shutdown signal")
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        await self._shutdown_event.wait()

    async def _transition_state(
        self, state: AgentState, *, detail: Optional[str] = None
    ) -> None:
        if state == self._state and detail == self._state_detail:
            return

        previous = self._state
        self._state = state
        self._state_detail = detail

        message_detail = detail or state.value
        LOGGER.info(
            "Agent state transition %s -> %s (%s)",
            previous.value,
            state.value,
            message_detail,
        )
        await self._health.set_agent_state(
            state.value,
            healthy=state == AgentState.ACTIVE,
            detail=message_detail,
        )

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------
    async def _start_services(self) -> bool:
        await self._transition_state(AgentState.COLD_START, detail="initialising")
        self._stopping = False

        await self._health.update("mqtt", False, "initialising")
        await self._health.update("appliance", False, "awaiting mqtt connectivity")
        await self._start_health_server()

        connection = self._appliance.connection
        connection.register_connected_callback(self._on_appliance_connected)
        connection.register_error_callback(self._on_appliance_error)

        await self._transition_state(AgentState.AWAITING_MQTT)
        if not await self._connect_mqtt():
            await self._transition_state(AgentState.DEGRADED, detail="mqtt unavailable")
            return False

        assert self._mqtt_client is not None
        self._bridge = MQTTBridge(self._appliance, self._mqtt_client, self._config.mqtt)
        await self._bridge.start()

        await self._transition_state(AgentState.AWAITING_APPLIANCE)
        await self._health.update("appliance", False, "connecting")
        try:
            await self._appliance.connect()
        except Exception as exc:
            LOGGER.error("Failed to connect to Rinnai Touch module: %s", exc)
            await self._health.update("appliance", False, str(exc))
            await self._transition_state(AgentState.DEGRADED, detail=str(exc))
            return False

        # The initial publish happened before the first status frame.
        self._bridge.publish_state()
        return True

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(
            self._health,
            health.host,
            health.port,
            appliance=self._appliance,
        )
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)

    async def _connect_mqtt(self) -> bool:
        """Connect to the broker, retrying with exponential backoff.

        paho reconnects on its own once the first connection succeeded.
        """

        mqtt_config = self._config.mqtt
        if not mqtt_config.host:
            LOGGER.error("MQTT host not specified; set [mqtt] host or MQTT_HOST")
            await self._health.update("mqtt", False, "host not specified")
            return False

        if self._mqtt_client is None:
            self._mqtt_client = MQTTClient(
                mqtt_config,
                client_id=_build_client_id(),
                will_topic=f"{mqtt_config.root_topic}/online",
            )
        client = self._mqtt_client
        client.register_connect_handler(self._on_mqtt_connect)
        client.register_disconnect_handler(self._on_mqtt_disconnect)

        delay = mqtt_config.reconnect_initial_seconds
        max_delay = max(delay, mqtt_config.reconnect_max_seconds)
        attempt = 0
        assert self._shutdown_event is not None

        while not self._shutdown_event.is_set():
            attempt += 1
            try:
                await client.connect()
            except MQTTConnectionError as exc:
                await self._health.update("mqtt", False, str(exc))
                LOGGER.warning(
                    "MQTT connection attempt %d failed: %s, retrying in %.1fs",
                    attempt,
                    exc,
                    delay,
                )
            else:
                await self._health.update("mqtt", True, None)
                return True

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            delay = min(delay * 2, max_delay)

        return False

    async def _stop_health_server(self) -> None:
        if self._health_server is None:
            return
        await self._health_server.stop()
        self._health_server = None
        await self._health.update("health-endpoint", False, "shutdown")

    async def _stop_services(self) -> None:
        await self._transition_state(AgentState.STOPPING, detail="shutdown requested")
        self._stopping = True

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

        if self._bridge is not None:
            await self._bridge.stop()
            self._bridge = None

        await self._appliance.disconnect()
        await self._health.update("appliance", False, "shutdown")

        if self._mqtt_client is not None:
            await self._mqtt_client.disconnect()
            await self._health.update("mqtt", False, "shutdown")

        await self._stop_health_server()

        if self._shutdown_event is not None:
            self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    async def _on_appliance_connected(self) -> None:
        await self._health.update("appliance", True, None)
        if self._bridge is not None:
            await self._transition_state(AgentState.ACTIVE)

    async def _on_appliance_error(self, exc: Exception) -> None:
        await self._health.update("appliance", False, str(exc))
        if not self._stopping:
            await self._transition_state(AgentState.DEGRADED, detail=str(exc))

    def _on_mqtt_disconnect(self, rc: int) -> None:
        # Runs on the event loop via call_soon_threadsafe.
        if self._stopping:
            return
        self._spawn(self._health.update("mqtt", False, f"disconnected (rc={rc})"))

    def _on_mqtt_connect(self, rc: int) -> None:
        if self._stopping:
            return
        self._spawn(self._health.update("mqtt", True, None))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


def _build_client_id() -> str:
    return f"{constants.APP_NAME}-{os.getpid()}"
