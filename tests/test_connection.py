"""Tests for the appliance session.

Covers the handshake, status change notification, keepalive, idle
detection and the fixed-delay reconnection behaviour against an in-process
fake module.
"""

import asyncio

import pytest

from rinnai_bridge.config import ApplianceConfig
from rinnai_bridge.connection import ApplianceConnection, SessionState
from rinnai_bridge.errors import HandshakeRejected, NotConnected

from conftest import FakeModule, wait_for


@pytest.mark.asyncio
async def test_connect_completes_handshake(fake_module, appliance_config):
    connection = ApplianceConnection(appliance_config(fake_module))

    await connection.connect()

    try:
        assert connection.state == SessionState.CONNECTED
        assert connection.is_connected
        assert connection.attempt == 1
        assert connection.store.sequence == 7
        assert connection.status()["SYST"]["AVM"]["HG"] == "Y"
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_status_before_connect_raises(fake_module, appliance_config):
    connection = ApplianceConnection(appliance_config(fake_module))

    assert connection.state == SessionState.DISCONNECTED
    with pytest.raises(NotConnected):
        connection.status()
    with pytest.raises(NotConnected):
        connection.send("{}")


@pytest.mark.asyncio
async def test_handshake_coalesced_with_status(appliance_config):
    module = FakeModule(send_status=False)
    module.handshake = b"*HELLO*" + module.frame()
    await module.start()
    connection = ApplianceConnection(appliance_config(module))

    try:
        await connection.connect()
        assert connection.status()["HGOM"]["OOP"]["ST"] == "F"
    finally:
        await connection.disconnect()
        await module.stop()


@pytest.mark.asyncio
async def test_unexpected_handshake_is_rejected(appliance_config):
    module = FakeModule(handshake=b"*BUSY*")
    await module.start()
    connection = ApplianceConnection(appliance_config(module, auto_reconnect=False))

    try:
        with pytest.raises(HandshakeRejected):
            await connection.connect()
        await wait_for(lambda: connection.state == SessionState.DISCONNECTED)
        assert connection.consecutive_failures == 1
    finally:
        await connection.disconnect()
        await module.stop()


@pytest.mark.asyncio
async def test_identical_frames_do_not_notify(fake_module, appliance_config):
    connection = ApplianceConnection(appliance_config(fake_module))
    snapshots = []
    connection.register_status_listener(snapshots.append)

    await connection.connect()
    try:
        await wait_for(lambda: len(snapshots) == 1)

        fake_module.groups[1]["HGOM"]["OOP"]["ST"] = "N"
        fake_module.push_status()
        await wait_for(lambda: len(snapshots) == 2)

        fake_module.push_status()
        await asyncio.sleep(0.1)

        assert len(snapshots) == 2
        assert snapshots[-1].state["HGOM"]["OOP"]["ST"] == "N"
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_malformed_frame_is_discarded(fake_module, appliance_config):
    connection = ApplianceConnection(appliance_config(fake_module))
    await connection.connect()

    try:
        fake_module.push_raw(b"N000009{truncated")
        await asyncio.sleep(0.1)

        assert connection.is_connected
        assert connection.store.sequence == 7
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_send_frames_payload_with_next_sequence(fake_module, appliance_config):
    connection = ApplianceConnection(appliance_config(fake_module))
    await connection.connect()

    try:
        sequence = connection.send('{"HGOM":{"OOP":{"ST":"N"}}}')
        await asyncio.wait_for(fake_module.command_received.wait(), timeout=1.0)

        assert sequence == 8
        assert fake_module.received == [b'N000008{"HGOM":{"OOP":{"ST":"N"}}}']
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_keepalive_sends_empty_update(fake_module, appliance_config):
    connection = ApplianceConnection(
        appliance_config(
            fake_module, keepalive_enabled=True, keepalive_interval_seconds=0.05
        )
    )
    await connection.connect()

    try:
        await asyncio.wait_for(fake_module.command_received.wait(), timeout=1.0)
        assert fake_module.received[0] == b"N000008{}"
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_idle_timeout_closes_session(fake_module, appliance_config):
    connection = ApplianceConnection(
        appliance_config(fake_module, idle_timeout_seconds=0.2, auto_reconnect=False)
    )
    await connection.connect()

    try:
        await wait_for(lambda: connection.state == SessionState.DISCONNECTED)
        with pytest.raises(NotConnected):
            connection.status()
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_reconnects_after_module_drops_session(fake_module, appliance_config):
    connection = ApplianceConnection(appliance_config(fake_module))
    connected = []
    connection.register_connected_callback(lambda: connected.append(True))

    await connection.connect()
    try:
        fake_module.drop_clients()

        await wait_for(lambda: fake_module.connections == 2 and len(connected) == 2)
        await wait_for(lambda: connection.is_connected)
        assert connection.attempt == 1
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_disconnect_suppresses_reconnection(fake_module, appliance_config):
    connection = ApplianceConnection(appliance_config(fake_module))
    await connection.connect()

    await connection.disconnect()
    await asyncio.sleep(0.2)

    assert connection.state == SessionState.DISCONNECTED
    assert connection.auto_reconnect is False
    assert fake_module.connections == 1

    # A second call is a no-op.
    await connection.disconnect()


@pytest.mark.asyncio
async def test_error_callback_after_repeated_failures(unused_tcp_port):
    connection = ApplianceConnection(
        ApplianceConfig(
            host="127.0.0.1",
            port=unused_tcp_port,
            reconnect_delay_seconds=0.01,
            connect_timeout_seconds=1.0,
            handshake_failure_threshold=2,
        )
    )
    errors: list[Exception] = []

    async def _on_error(exc: Exception) -> None:
        errors.append(exc)

    connection.register_error_callback(_on_error)

    try:
        with pytest.raises(OSError):
            await connection.connect()
        await wait_for(lambda: len(errors) >= 1)
        assert connection.consecutive_failures >= 2
        assert connection.attempt >= 2
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_connect_after_disconnect_restores_reconnection(
    fake_module, appliance_config
):
    connection = ApplianceConnection(appliance_config(fake_module))
    await connection.connect()
    await connection.disconnect()
    assert connection.auto_reconnect is False

    await connection.connect()
    try:
        assert connection.auto_reconnect is True

        fake_module.drop_clients()
        await wait_for(lambda: fake_module.connections == 3)
        await wait_for(lambda: connection.is_connected)
    finally:
        await connection.disconnect()


@pytest.mark.asyncio
async def test_disconnect_during_settle_delay_cancels_reconnection(
    fake_module, appliance_config
):
    connection = ApplianceConnection(
        appliance_config(fake_module, reconnect_delay_seconds=0.5)
    )
    await connection.connect()

    fake_module.drop_clients()
    await wait_for(lambda: connection.state == SessionState.RECONNECTING)

    # The previous session's sequence must not be reused.
    assert connection.store.snapshot is None
    with pytest.raises(NotConnected):
        connection.send("{}")

    await connection.disconnect()
    await asyncio.sleep(0.8)

    assert connection.state == SessionState.DISCONNECTED
    assert fake_module.connections == 1


@pytest.mark.asyncio
async def test_wrongly_shaped_frame_keeps_previous_snapshot(
    fake_module, appliance_config
):
    connection = ApplianceConnection(appliance_config(fake_module))
    await connection.connect()

    try:
        fake_module.push_raw(b'N000009[{"SYST":"garbage"}]')
        await asyncio.sleep(0.1)

        assert connection.is_connected
        assert connection.store.sequence == 7
        assert connection.status()["SYST"]["AVM"]["HG"] == "Y"
    finally:
        await connection.disconnect()
