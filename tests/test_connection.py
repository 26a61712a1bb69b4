from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest

from pybimmerdash._codec import (
    ResponseEnvelope,
    ResponseKind,
    encode_data_response,
    encode_keep_alive,
    encode_routing_activation,
)
from pybimmerdash._connection import ConnectionManager
from pybimmerdash._constants import ROUTING_ACTIVATION_RESPONSE
from pybimmerdash.config import EngineConfig
from pybimmerdash.exceptions import ConnectionLost, ConnectRefused, ConnectTimeout
from pybimmerdash.models.connection import ConnectionState

if TYPE_CHECKING:
    from conftest import FakeFactory


class _Recorder:
    def __init__(self) -> None:
        self.states: list[tuple[ConnectionState, ConnectionState]] = []
        self.responses: list[ResponseEnvelope] = []
        self.connected_epochs: list[int] = []
        self.teardowns = 0

    def on_state(self, previous: ConnectionState, current: ConnectionState, _reason: str) -> None:
        self.states.append((previous, current))

    def on_teardown(self) -> None:
        self.teardowns += 1


def _manager(factory: FakeFactory, recorder: _Recorder, **overrides: object) -> ConnectionManager:
    settings: dict[str, object] = {"keep_alive_interval": 60.0, "reconnect_delay": 60.0}
    settings.update(overrides)
    return ConnectionManager(
        EngineConfig(**settings),  # type: ignore[arg-type]
        on_response=recorder.responses.append,
        on_state=recorder.on_state,
        on_connected=recorder.connected_epochs.append,
        on_teardown=recorder.on_teardown,
        transport_factory=factory,
    )


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_connect_sends_routing_activation_and_goes_connected(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)

    await manager.connect("10.0.0.5", 13400, timeout=1.5)

    assert manager.state is ConnectionState.CONNECTED
    assert manager.is_connected
    assert fake_factory.calls == [("10.0.0.5", 13400, 1.5)]
    assert fake_factory.last.sent == [encode_routing_activation()]
    assert recorder.states == [
        (ConnectionState.DISCONNECTED, ConnectionState.CONNECTING),
        (ConnectionState.CONNECTING, ConnectionState.CONNECTED),
    ]
    assert recorder.connected_epochs == [manager.epoch]

    await manager.disconnect()


@pytest.mark.asyncio
async def test_refused_connection_ends_in_failed(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)
    fake_factory.error = ConnectRefused("refused", host="10.0.0.5", port=13400)

    with pytest.raises(ConnectRefused):
        await manager.connect("10.0.0.5")

    assert manager.state is ConnectionState.FAILED
    assert not manager.is_connected
    assert recorder.connected_epochs == []


@pytest.mark.asyncio
async def test_required_activation_without_response_times_out(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder, require_routing_activation=True, activation_timeout=0.05)

    with pytest.raises(ConnectTimeout):
        await manager.connect("10.0.0.5")

    assert manager.state is ConnectionState.FAILED
    assert fake_factory.last.closed


@pytest.mark.asyncio
async def test_required_activation_completes_on_response(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder, require_routing_activation=True, activation_timeout=1.0)
    fake_factory.replies[encode_routing_activation()] = [ROUTING_ACTIVATION_RESPONSE]

    await manager.connect("10.0.0.5")

    assert manager.state is ConnectionState.CONNECTED
    assert recorder.responses[0].kind is ResponseKind.ROUTING_ACTIVATION

    await manager.disconnect()


@pytest.mark.asyncio
async def test_cancelled_connect_closes_the_half_open_session(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder, require_routing_activation=True, activation_timeout=5.0)

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(manager.connect("10.0.0.5"), timeout=0.05)

    transport = fake_factory.last
    assert manager.state is ConnectionState.DISCONNECTED
    assert not manager.is_connected
    assert transport.closed
    assert recorder.teardowns == 1
    assert recorder.connected_epochs == []

    transport.feed(encode_data_response(0xF45C, b"\x78"))
    await asyncio.sleep(0.02)
    assert recorder.responses == []


@pytest.mark.asyncio
async def test_received_frames_are_dispatched(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)
    await manager.connect("10.0.0.5")

    fake_factory.last.feed(encode_data_response(0xF45C, b"\x78"))
    await _wait_until(lambda: bool(recorder.responses))

    assert recorder.responses[0].did == 0xF45C

    await manager.disconnect()


@pytest.mark.asyncio
async def test_three_keep_alive_failures_schedule_exactly_one_reconnect(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)
    await manager.connect("10.0.0.5")
    transport = fake_factory.last
    transport.fail_sends = True

    assert await manager.send_keep_alive() is False
    assert await manager.send_keep_alive() is False
    assert manager.keep_alive_failures == 2
    assert await manager.send_keep_alive() is True

    assert manager.state is ConnectionState.RECONNECTING
    assert manager.reconnect_pending
    assert manager.schedule_reconnect() is False
    assert transport.closed
    assert recorder.teardowns == 1

    await manager.disconnect()
    assert not manager.reconnect_pending
    assert manager.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_successful_keep_alive_resets_failure_count(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)
    await manager.connect("10.0.0.5")
    transport = fake_factory.last

    transport.fail_sends = True
    await manager.send_keep_alive()
    await manager.send_keep_alive()
    transport.fail_sends = False
    await manager.send_keep_alive()

    assert manager.keep_alive_failures == 0
    assert transport.sent[-1] == encode_keep_alive()
    assert manager.state is ConnectionState.CONNECTED

    await manager.disconnect()


@pytest.mark.asyncio
async def test_keep_alive_exhaustion_without_auto_reconnect_disconnects(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder, auto_reconnect=False, keep_alive_max_failures=1)
    await manager.connect("10.0.0.5")
    fake_factory.last.fail_sends = True

    assert await manager.send_keep_alive() is True

    assert manager.state is ConnectionState.DISCONNECTED
    assert not manager.reconnect_pending


@pytest.mark.asyncio
async def test_reconnect_opens_a_fresh_session(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder, reconnect_delay=0.0, keep_alive_max_failures=1)
    await manager.connect("10.0.0.5")
    first_epoch = manager.epoch
    fake_factory.last.fail_sends = True

    await manager.send_keep_alive()
    await _wait_until(lambda: manager.state is ConnectionState.CONNECTED)

    assert len(fake_factory.transports) == 2
    assert fake_factory.calls[-1][0] == "10.0.0.5"
    assert manager.epoch > first_epoch
    assert recorder.connected_epochs == [first_epoch, manager.epoch]

    await manager.disconnect()


@pytest.mark.asyncio
async def test_failed_reconnect_leaves_disconnected(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder, reconnect_delay=0.0, keep_alive_max_failures=1)
    await manager.connect("10.0.0.5")
    fake_factory.last.fail_sends = True
    fake_factory.error = ConnectRefused("refused", host="10.0.0.5", port=13400)

    await manager.send_keep_alive()
    await _wait_until(lambda: not manager.reconnect_pending)

    assert manager.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_new_connection_invalidates_previous_epoch(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)
    await manager.connect("10.0.0.5")
    old_epoch = manager.epoch
    old_transport = fake_factory.last
    old_task = manager.spawn(asyncio.sleep(60), name="old-epoch-task")

    await manager.connect("10.0.0.6")

    with pytest.raises(asyncio.CancelledError):
        await old_task
    assert old_transport.closed
    with pytest.raises(ConnectionLost):
        await manager.send(b"\x00", epoch=old_epoch)
    await manager.send(encode_keep_alive(), epoch=manager.epoch)
    assert fake_factory.last.sent[-1] == encode_keep_alive()

    await manager.disconnect()


@pytest.mark.asyncio
async def test_peer_close_goes_disconnected(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)
    await manager.connect("10.0.0.5")

    fake_factory.last.close_from_peer()
    await _wait_until(lambda: manager.state is ConnectionState.DISCONNECTED)

    assert not manager.is_connected
    assert not manager.reconnect_pending
    with pytest.raises(ConnectionLost):
        await manager.send(encode_keep_alive())


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)
    await manager.connect("10.0.0.5")

    await manager.disconnect()
    await manager.disconnect()

    assert manager.state is ConnectionState.DISCONNECTED
    assert recorder.states.count((ConnectionState.CONNECTED, ConnectionState.DISCONNECTED)) == 1


@pytest.mark.asyncio
async def test_battery_saving_only_toggles_online_states(fake_factory: FakeFactory) -> None:
    recorder = _Recorder()
    manager = _manager(fake_factory, recorder)

    manager.set_battery_saving(True)
    assert manager.state is ConnectionState.DISCONNECTED

    await manager.connect("10.0.0.5")
    manager.set_battery_saving(True)
    assert manager.state is ConnectionState.BATTERY_SAVING
    assert manager.is_connected

    manager.set_battery_saving(False)
    assert manager.state is ConnectionState.CONNECTED

    await manager.disconnect()
