"""Lifecycle tests for RinnaiBridgeApp with fake collaborators."""

import asyncio
from pathlib import Path

import pytest

from rinnai_bridge.adapters import MQTTConnectionError
from rinnai_bridge.app import AgentState, RinnaiBridgeApp
from rinnai_bridge.appliance import RinnaiTouch
from rinnai_bridge.config import load_config

from conftest import wait_for


class FakeMQTTClient:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.connect_calls = 0
        self.disconnected = False
        self.published: list[tuple[str, bytes, bool]] = []
        self.subscribed: list[str] = []
        self.handler = None
        self.connect_handlers = []
        self.disconnect_handlers = []

    async def connect(self, timeout: float = 30.0) -> None:
        self.connect_calls += 1
        if self.connect_calls <= self.failures:
            raise MQTTConnectionError("broker unavailable")

    async def disconnect(self, timeout: float = 5.0) -> None:
        self.disconnected = True

    def publish(self, topic, payload, qos=1, retain=False):
        self.published.append((topic, payload, retain))

    def subscribe(self, topic, qos=1):
        self.subscribed.append(topic)

    def set_message_handler(self, handler):
        self.handler = handler

    def register_connect_handler(self, handler):
        self.connect_handlers.append(handler)

    def register_disconnect_handler(self, handler):
        self.disconnect_handlers.append(handler)


def _config(tmp_path: Path, module, *, mqtt_host: str | None = "broker.local"):
    config = load_config(tmp_path / "rinnai-bridge.cfg", environ={})
    config.appliance.host = "127.0.0.1"
    config.appliance.port = module.port
    config.appliance.keepalive_enabled = False
    config.appliance.reconnect_delay_seconds = 0.05
    config.mqtt.host = mqtt_host
    config.mqtt.reconnect_initial_seconds = 0.01
    config.mqtt.reconnect_max_seconds = 0.02
    return config


@pytest.mark.asyncio
async def test_app_reaches_active_and_shuts_down(tmp_path, fake_module):
    config = _config(tmp_path, fake_module)
    mqtt_client = FakeMQTTClient()
    app = RinnaiBridgeApp(
        config,
        appliance=RinnaiTouch(config.appliance, config.commands),
        mqtt_client=mqtt_client,
    )

    task = asyncio.create_task(app.run())
    try:
        await wait_for(lambda: app.state == AgentState.ACTIVE)
        snapshot = await app.health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}
        assert components["mqtt"]["healthy"] is True
        assert components["appliance"]["healthy"] is True
        assert "rinnaitouch/command" in mqtt_client.subscribed
        assert ("rinnaitouch/online", b"true", True) in mqtt_client.published
    finally:
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)

    assert app.state == AgentState.STOPPING
    assert mqtt_client.disconnected
    assert mqtt_client.published[-1] == ("rinnaitouch/online", b"false", True)


@pytest.mark.asyncio
async def test_app_retries_broker_connection(tmp_path, fake_module):
    config = _config(tmp_path, fake_module)
    mqtt_client = FakeMQTTClient(failures=2)
    app = RinnaiBridgeApp(
        config,
        appliance=RinnaiTouch(config.appliance, config.commands),
        mqtt_client=mqtt_client,
    )

    task = asyncio.create_task(app.run())
    try:
        await wait_for(lambda: app.state == AgentState.ACTIVE)
        assert mqtt_client.connect_calls == 3
    finally:
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_app_without_broker_host_is_degraded(tmp_path, fake_module):
    config = _config(tmp_path, fake_module, mqtt_host=None)
    app = RinnaiBridgeApp(config, appliance=RinnaiTouch(config.appliance))

    task = asyncio.create_task(app.run())
    try:
        await wait_for(lambda: app.state == AgentState.DEGRADED)
        snapshot = await app.health.snapshot()
        assert snapshot["status"] == "degraded"
        assert fake_module.connections == 0
    finally:
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_broker_callbacks_are_tracked_until_complete(tmp_path, fake_module):
    config = _config(tmp_path, fake_module)
    app = RinnaiBridgeApp(
        config,
        appliance=RinnaiTouch(config.appliance, config.commands),
        mqtt_client=FakeMQTTClient(),
    )

    task = asyncio.create_task(app.run())
    try:
        await wait_for(lambda: app.state == AgentState.ACTIVE)

        app._on_mqtt_disconnect(7)
        assert len(app._pending) == 1
        await wait_for(lambda: not app._pending)

        snapshot = await app.health.snapshot()
        components = {item["name"]: item for item in snapshot["components"]}
        assert components["mqtt"]["healthy"] is False
        assert components["mqtt"]["detail"] == "disconnected (rc=7)"
    finally:
        app.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)
