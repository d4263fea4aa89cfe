"""Publishes appliance state to MQTT and routes MQTT commands back to it."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Optional, Protocol

from .adapters import MQTTConnectionError
from .appliance import RinnaiTouch
from .config import MQTTConfig
from .errors import MalformedFrame, NotConnected, RinnaiError
from .frames import StatusSnapshot
from .homeassistant import build_discovery_entities
from .schema import boundary_text

LOGGER = logging.getLogger(__name__)


class MessageBus(Protocol):
    """Subset of :class:`~rinnai_bridge.adapters.MQTTClient` used by the bridge."""

    def publish(
        self, topic: str, payload: bytes, qos: int = 1, retain: bool = False
    ) -> None: ...

    def subscribe(self, topic: str, qos: int = 1) -> None: ...

    def set_message_handler(self, handler) -> None: ...

    def register_connect_handler(self, handler) -> None: ...


class MQTTBridge:
    """Mirrors the appliance onto a tree of MQTT topics.

    Topics (relative to ``root_topic``):

    * ``online`` - ``true``/``false`` session availability (retained)
    * ``status`` - raw merged state tree as JSON (retained)
    * ``config`` - semantic configuration as JSON (retained)
    * ``config/<service>/<field>`` - one retained value per field
    * ``command`` - inbound ``[service, field, value]`` JSON array
    * ``command/success`` - ``true``/``false`` outcome of the last command
    * ``rawcommand`` - inbound appliance-native payload sent verbatim
    """

    def __init__(
        self,
        appliance: RinnaiTouch,
        mqtt_client: MessageBus,
        config: Optional[MQTTConfig] = None,
    ) -> None:
        self._appliance = appliance
        self._mqtt = mqtt_client
        self._config = config or MQTTConfig()

        root = self._config.root_topic
        self.online_topic = f"{root}/online"
        self.status_topic = f"{root}/status"
        self.config_topic = f"{root}/config"
        self.command_topic = f"{root}/command"
        self.success_topic = f"{root}/command/success"
        self.raw_command_topic = f"{root}/rawcommand"

        self._republish_task: Optional[asyncio.Task[None]] = None
        self._pending: set[asyncio.Task[Any]] = set()
        self._command_lock = asyncio.Lock()
        self._started = False

    async def start(self) -> None:
        """Subscribe to the command topics and begin mirroring state."""

        if self._started:
            return
        self._started = True

        connection = self._appliance.connection
        connection.register_status_listener(self._on_status_changed)
        connection.register_connected_callback(self._on_appliance_connected)
        connection.register_error_callback(self._on_appliance_error)

        self._mqtt.set_message_handler(self.handle_message)
        self._mqtt.register_connect_handler(self._on_mqtt_connect)

        await self._on_mqtt_connected()

        self._republish_task = asyncio.create_task(self._republish_loop())

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False

        connection = self._appliance.connection
        connection.remove_status_listener(self._on_status_changed)
        self._mqtt.set_message_handler(None)

        tasks = [task for task in (self._republish_task, *self._pending) if task]
        self._republish_task = None
        self._pending.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self.publish_online(False)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------
    def publish_online(self, online: bool) -> None:
        self._publish(self.online_topic, boundary_text(online), retain=True)

    def publish_discovery(self) -> None:
        if not self._config.discovery_enabled:
            return
        for topic, payload in build_discovery_entities(
            self._config.root_topic, self._config.discovery_prefix
        ):
            LOGGER.info("Publishing Home Assistant discovery for %s", payload["unique_id"])
            self._publish(topic, json.dumps(payload, indent=4), retain=True)

    def publish_state(self) -> bool:
        """Publish status, config and per-field topics.

        Returns ``False`` when there is no live session to publish from.
        """

        try:
            status = self._appliance.status()
            config = self._appliance.config()
        except (NotConnected, MalformedFrame) as exc:
            LOGGER.debug("Skipping state publish: %s", exc)
            return False

        self._publish(self.status_topic, json.dumps(status, indent=4), retain=True)
        self._publish(self.config_topic, json.dumps(config, indent=4), retain=True)
        for service, fields in config.items():
            for name, value in fields.items():
                self._publish(
                    f"{self.config_topic}/{service}/{name}",
                    boundary_text(value),
                    retain=True,
                )
        return True

    def _publish(self, topic: str, payload: str, *, retain: bool = False) -> bool:
        try:
            self._mqtt.publish(topic, payload.encode("utf-8"), retain=retain)
        except (MQTTConnectionError, RuntimeError) as exc:
            LOGGER.warning("Failed to publish %s: %s", topic, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    async def handle_message(self, topic: str, payload: bytes) -> None:
        text = payload.decode("utf-8", errors="replace")
        LOGGER.info("Command received: %s on topic: %s", text, topic)

        if topic == self.command_topic:
            await self._handle_command(text)
        elif topic == self.raw_command_topic:
            await self._handle_raw_command(text)
        else:
            LOGGER.debug("Ignoring message on unexpected topic %s", topic)

    async def _handle_command(self, text: str) -> None:
        async with self._command_lock:
            try:
                service, field, value = _parse_command(text)
                result = await self._appliance.command(service, field, value)
            except (ValueError, RinnaiError) as exc:
                LOGGER.error("Error processing command %s: %s", text, exc)
                result = False
            else:
                if result:
                    LOGGER.info("Command successful: %s", text)
                else:
                    LOGGER.warning("Command failed: %s", text)

            self._publish(self.success_topic, boundary_text(result))
            self.publish_state()

    async def _handle_raw_command(self, text: str) -> None:
        try:
            self._appliance.send(text)
        except NotConnected as exc:
            LOGGER.error("Unable to send raw command %s: %s", text, exc)
            return
        self.publish_state()

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    async def _on_status_changed(self, snapshot: StatusSnapshot) -> None:
        LOGGER.debug("Status changed (sequence=%d); republishing", snapshot.sequence)
        self.publish_state()

    async def _on_appliance_connected(self) -> None:
        self.publish_online(True)

    async def _on_appliance_error(self, exc: Exception) -> None:
        LOGGER.warning("Appliance unavailable: %s", exc)
        self.publish_online(False)

    def _on_mqtt_connect(self, rc: int) -> None:
        # Broker sessions are not persistent; subscriptions and retained
        # topics are restored on every reconnect.
        if not self._started:
            return
        task = asyncio.create_task(self._on_mqtt_connected())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _on_mqtt_connected(self) -> None:
        try:
            self._mqtt.subscribe(self.command_topic)
            self._mqtt.subscribe(self.raw_command_topic)
        except (MQTTConnectionError, RuntimeError) as exc:
            LOGGER.error("Failed to subscribe to command topics: %s", exc)
            return

        self.publish_online(self._appliance.is_connected)
        self.publish_state()
        self.publish_discovery()

    async def _republish_loop(self) -> None:
        interval = self._config.republish_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.publish_state()


def _parse_command(text: str) -> tuple[str, str, str]:
    """Parse a ``[service, field, value]`` command payload.

    Raises:
        ValueError: the payload is not a three element JSON array.
    """

    command = json.loads(text)
    if not isinstance(command, list) or len(command) != 3:
        raise ValueError("invalid command format; expected [service, field, value]")
    service, field, value = command
    if not isinstance(service, str) or not isinstance(field, str):
        raise ValueError("service and field must be strings")
    return service, field, boundary_text(value)
