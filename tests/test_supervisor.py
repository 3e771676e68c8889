"""Tests for the disconnect / grace period / reconnect cycle."""

import asyncio
import signal

import pytest

from terminal_sessions.record import SessionStatus, SpawnConfig
from terminal_sessions.timers import GRACE


@pytest.mark.asyncio
async def test_reconnect_within_grace_keeps_session(manager, spawner, events):
    await manager.spawn(SpawnConfig(id="t1"))
    proc = spawner.last

    assert manager.disconnect("t1") is True
    assert manager.get_session("t1").status is SessionStatus.DISCONNECTED

    record = manager.reconnect("t1")
    assert record is not None
    assert record.status is SessionStatus.ACTIVE

    await asyncio.sleep(0.1)
    assert manager.get_session("t1") is record
    assert proc.kills == []
    assert len(events.of("session.disconnected", "t1")) == 1
    assert len(events.of("session.reconnected", "t1")) == 1


@pytest.mark.asyncio
async def test_grace_expiry_kills_and_removes(manager, spawner, events):
    await manager.spawn(SpawnConfig(id="t1"))
    proc = spawner.last

    manager.disconnect("t1")
    await asyncio.sleep(0.15)

    assert manager.get_session("t1") is None
    assert proc.kills == [signal.SIGTERM]
    closed = events.of("session.closed", "t1")
    assert len(closed) == 1
    assert closed[0].data["signal"] == signal.SIGTERM


@pytest.mark.asyncio
async def test_grace_expiry_escalates_for_stubborn_process(manager, spawner, events):
    spawner.ignores = (signal.SIGTERM,)
    await manager.spawn(SpawnConfig(id="t1"))
    proc = spawner.last

    manager.disconnect("t1")
    await asyncio.sleep(0.25)

    assert manager.get_session("t1") is None
    assert proc.kills == [signal.SIGTERM, signal.SIGKILL]
    assert events.of("session.closed", "t1")[0].data["signal"] == signal.SIGKILL


@pytest.mark.asyncio
async def test_repeated_disconnect_keeps_one_timer(manager):
    await manager.spawn(SpawnConfig(id="t1"))
    manager.disconnect("t1")
    first = manager.timers.get("t1", GRACE)
    manager.disconnect("t1")
    second = manager.timers.get("t1", GRACE)

    assert first is not second
    await asyncio.sleep(0.001)
    assert first.done()
    assert manager.timers.pending("t1", GRACE)


@pytest.mark.asyncio
async def test_disconnect_unknown_session(manager):
    assert manager.disconnect("missing") is False
    assert len(manager.timers) == 0


@pytest.mark.asyncio
async def test_reconnect_without_pending_timer(manager):
    await manager.spawn(SpawnConfig(id="t1"))
    assert manager.reconnect("t1") is None
    assert manager.reconnect("missing") is None


@pytest.mark.asyncio
async def test_cancel_disconnect(manager):
    await manager.spawn(SpawnConfig(id="t1"))
    assert manager.cancel_disconnect("t1") is False

    manager.disconnect("t1")
    assert manager.cancel_disconnect("t1") is True
    assert manager.get_session("t1").status is SessionStatus.ACTIVE
    assert not manager.timers.pending("t1", GRACE)


@pytest.mark.asyncio
async def test_can_reconnect(manager):
    await manager.spawn(SpawnConfig(id="t1"))
    assert manager.can_reconnect("t1")
    assert not manager.can_reconnect("missing")


@pytest.mark.asyncio
async def test_disconnected_session_exit_before_expiry(manager, spawner):
    """A session that exits on its own during the grace window is removed once."""
    await manager.spawn(SpawnConfig(id="t1"))
    proc = spawner.last
    manager.disconnect("t1")
    proc.exit(0)

    assert manager.get_session("t1") is None
    assert not manager.timers.pending("t1", GRACE)
    await asyncio.sleep(0.1)
    assert proc.kills == []
