"""Tests for the MQTT bridge using a fake bus and the fake module."""

import json

import pytest
import pytest_asyncio

from rinnai_bridge.appliance import RinnaiTouch
from rinnai_bridge.bridge import MQTTBridge
from rinnai_bridge.config import MQTTConfig

from conftest import wait_for


class FakeBus:
    def __init__(self) -> None:
        self.published: list[tuple[str, bytes, bool]] = []
        self.subscribed: list[str] = []
        self.handler = None
        self.connect_handlers = []

    def publish(self, topic, payload, qos=1, retain=False):
        self.published.append((topic, payload, retain))

    def subscribe(self, topic, qos=1):
        self.subscribed.append(topic)

    def set_message_handler(self, handler):
        self.handler = handler

    def register_connect_handler(self, handler):
        self.connect_handlers.append(handler)

    def last(self, topic: str):
        for published_topic, payload, retain in reversed(self.published):
            if published_topic == topic:
                return payload.decode("utf-8"), retain
        return None

    def topics(self) -> set[str]:
        return {topic for topic, _, _ in self.published}


@pytest_asyncio.fixture
async def bridge_setup(fake_module, appliance_config, fast_commands):
    appliance = RinnaiTouch(appliance_config(fake_module), fast_commands)
    bus = FakeBus()
    bridge = MQTTBridge(appliance, bus, MQTTConfig(republish_interval_seconds=30))
    await appliance.connect()
    await bridge.start()
    try:
        yield bridge, bus, appliance, fake_module
    finally:
        await bridge.stop()
        await appliance.disconnect()


@pytest.mark.asyncio
async def test_start_subscribes_and_publishes_state(bridge_setup):
    _, bus, _, _ = bridge_setup

    assert bus.subscribed == ["rinnaitouch/command", "rinnaitouch/rawcommand"]
    assert bus.last("rinnaitouch/online") == ("true", True)

    status, retained = bus.last("rinnaitouch/status")
    assert retained is True
    assert json.loads(status)["SYST"]["AVM"]["HG"] == "Y"

    config, _ = bus.last("rinnaitouch/config")
    assert json.loads(config)["gasHeating"]["setTemp"] == "22"

    assert bus.last("rinnaitouch/config/system/gasHeating") == ("true", True)
    assert bus.last("rinnaitouch/config/gasHeating/operatingState") == ("off", True)
    assert bus.last("rinnaitouch/config/system/faultCode") == ("", True)


@pytest.mark.asyncio
async def test_start_publishes_discovery(bridge_setup):
    _, bus, _, _ = bridge_setup

    payload, retained = bus.last(
        "homeassistant/climate/rinnai_touch_proxy_zone_common/config"
    )
    assert retained is True
    assert json.loads(payload)["availability_topic"] == "rinnaitouch/online"


@pytest.mark.asyncio
async def test_command_publishes_success(bridge_setup):
    _, bus, _, module = bridge_setup

    await bus.handler("rinnaitouch/command", b'["gasHeating", "operatingState", "on"]')

    assert bus.last("rinnaitouch/command/success") == ("true", False)
    assert module.received == [b'N000008{"HGOM":{"OOP":{"ST":"N"}}}']
    assert bus.last("rinnaitouch/config/gasHeating/operatingState") == ("on", True)


@pytest.mark.asyncio
async def test_numeric_command_values_are_accepted(bridge_setup):
    _, bus, _, module = bridge_setup

    await bus.handler("rinnaitouch/command", b'["gasHeating", "setTemp", 24]')

    assert bus.last("rinnaitouch/command/success") == ("true", False)
    assert module.received == [b'N000008{"HGOM":{"GSO":{"SP":"24"}}}']


@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b'{"service": "gasHeating"}',
        b'["gasHeating", "operatingState"]',
        b'["evapCooling", "operatingState", "on"]',
        b'["gasHeating", "operatingState", "maybe"]',
    ],
)
@pytest.mark.asyncio
async def test_rejected_commands_publish_false(bridge_setup, payload):
    _, bus, _, module = bridge_setup

    await bus.handler("rinnaitouch/command", payload)

    assert bus.last("rinnaitouch/command/success") == ("false", False)
    assert module.received == []


@pytest.mark.asyncio
async def test_raw_command_is_sent_verbatim(bridge_setup):
    _, bus, _, module = bridge_setup

    await bus.handler("rinnaitouch/rawcommand", b'{"HGOM":{"GSO":{"SP":"25"}}}')
    await wait_for(lambda: module.received)

    assert module.received == [b'N000008{"HGOM":{"GSO":{"SP":"25"}}}']


@pytest.mark.asyncio
async def test_status_change_republishes(bridge_setup):
    _, bus, _, module = bridge_setup

    module.groups[1]["HGOM"]["GSO"]["SP"] = "19"
    module.push_status()

    await wait_for(
        lambda: bus.last("rinnaitouch/config/gasHeating/setTemp") == ("19", True)
    )


@pytest.mark.asyncio
async def test_appliance_error_marks_offline(bridge_setup):
    bridge, bus, _, _ = bridge_setup

    await bridge._on_appliance_error(ConnectionRefusedError("refused"))

    assert bus.last("rinnaitouch/online") == ("false", True)


@pytest.mark.asyncio
async def test_broker_reconnect_restores_subscriptions(bridge_setup):
    _, bus, _, _ = bridge_setup
    bus.subscribed.clear()

    for handler in bus.connect_handlers:
        handler(0)
    await wait_for(lambda: len(bus.subscribed) == 2)

    assert bus.subscribed == ["rinnaitouch/command", "rinnaitouch/rawcommand"]


@pytest.mark.asyncio
async def test_stop_marks_offline(fake_module, appliance_config):
    appliance = RinnaiTouch(appliance_config(fake_module))
    bus = FakeBus()
    bridge = MQTTBridge(
        appliance, bus, MQTTConfig(root_topic="hvac", discovery_enabled=False)
    )

    await bridge.start()
    await bridge.stop()

    assert bus.last("hvac/online") == ("false", True)
    assert not any(topic.startswith("homeassistant/") for topic in bus.topics())
    assert "hvac/status" not in bus.topics()
