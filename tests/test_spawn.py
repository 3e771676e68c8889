"""Tests for session creation: direct shells, tmux sessions and reattach."""

import asyncio
import signal

import pytest

from terminal_sessions.errors import CreationError, MultiplexerError
from terminal_sessions.record import SessionStatus, SpawnConfig
from terminal_sessions.timers import AUTO_EXEC, GRACE, PROMPT_FLUSH

from conftest import EventLog


@pytest.mark.asyncio
async def test_spawn_direct_bash(manager, spawner, events):
    """A plain bash session is active with a pid before any startup write."""
    record = await manager.spawn({"id": "t1", "terminalType": "bash", "useTmux": False, "cols": 80, "rows": 30})

    assert record.status is SessionStatus.ACTIVE
    assert record.pid > 0
    assert record.tmux_session is None
    assert (record.cols, record.rows) == (80, 30)
    assert manager.get_session("t1") is record

    proc = spawner.last
    assert proc.started
    assert proc.argv == ["bash", "-i"]
    assert proc.writes == []
    assert manager.timers.pending("t1", PROMPT_FLUSH)
    assert not manager.timers.pending("t1", AUTO_EXEC)

    spawned = events.of("session.spawned", "t1")
    assert len(spawned) == 1
    assert spawned[0].data["reconnected"] is False


@pytest.mark.asyncio
async def test_bash_gets_only_prompt_flush_write(manager, spawner):
    """bash has no default command; only the empty initialization write happens."""
    await manager.spawn(SpawnConfig(id="t1"))
    await asyncio.sleep(0.08)
    assert spawner.last.writes == [b""]


@pytest.mark.asyncio
async def test_spawn_environment(manager, spawner, settings):
    await manager.spawn(SpawnConfig(id="t1", name="Agent One", env={"FOO": "bar"}, is_dark=False))
    env = spawner.last.env

    assert env["TERM"] == "xterm-256color"
    assert env["COLUMNS"] == str(settings.default_cols)
    assert env["LINES"] == str(settings.default_rows)
    assert env["AGENT_NAME"] == "Agent One"
    assert env["TERMINAL_SESSIONS_ID"] == "t1"
    assert env["TERMINAL_SESSIONS_PROCESS"] == "true"
    assert env["COLORFGBG"] == "0;15"
    assert env["FOO"] == "bar"
    assert spawner.last.cwd == settings.default_workdir


@pytest.mark.asyncio
async def test_launch_type_writes_prompt_after_delay(manager, spawner):
    await manager.spawn(SpawnConfig(id="c1", terminal_type="claude-code", prompt="fix the bug"))
    proc = spawner.last
    assert proc.argv == ["bash"]
    assert proc.writes == []

    await asyncio.sleep(0.06)
    assert proc.writes == ["claude 'fix the bug'\n"]


@pytest.mark.asyncio
async def test_explicit_commands_override_type_default(manager, spawner):
    await manager.spawn(SpawnConfig(id="c1", terminal_type="codex", commands=["cd /tmp", "make test"]))
    await asyncio.sleep(0.06)
    assert spawner.last.writes == ["cd /tmp\n", "make test\n"]


@pytest.mark.asyncio
async def test_startup_write_skipped_after_session_killed(manager, spawner):
    await manager.spawn(SpawnConfig(id="c1", terminal_type="codex"))
    proc = spawner.last
    await manager.kill("c1")
    await asyncio.sleep(0.06)
    assert proc.writes == []


@pytest.mark.asyncio
async def test_duplicate_direct_id_rejected(manager, spawner):
    await manager.spawn(SpawnConfig(id="t1"))
    with pytest.raises(CreationError):
        await manager.spawn(SpawnConfig(id="t1"))
    assert len(spawner.spawned) == 1


@pytest.mark.asyncio
async def test_pty_failure_raises_creation_error(manager, spawner):
    spawner.error = OSError("no ptys left")
    with pytest.raises(CreationError) as excinfo:
        await manager.spawn(SpawnConfig(id="t1"))
    assert isinstance(excinfo.value.__cause__, OSError)
    assert len(manager.registry) == 0


@pytest.mark.asyncio
async def test_new_tmux_session(manager, spawner, mux):
    record = await manager.spawn(SpawnConfig(id="ctt-abc", use_tmux=True, cols=100, rows=40))

    assert record.tmux_session == "ctt-abc"
    assert record.use_tmux
    assert "ctt-abc" in mux.sessions
    assert mux.sessions["ctt-abc"]["options"]["remain-on-exit"] == "off"
    create = mux.called("create")[0]
    assert create[3:5] == (100, 40)
    assert create[5]["COLORTERM"] == "truecolor"
    assert spawner.last.argv == ["tmux", "attach-session", "-t", "ctt-abc"]


@pytest.mark.asyncio
async def test_new_tmux_session_name_is_made_unique(manager, mux):
    mux.sessions["work"] = {"options": {}}
    mux.sessions["work-2"] = {"options": {}}
    record = await manager.spawn(SpawnConfig(id="x1", name="work", use_tmux=True))
    assert record.tmux_session == "work-3"


@pytest.mark.asyncio
async def test_tmux_create_failure(manager, spawner, mux):
    mux.create_error = MultiplexerError("Failed to create tmux session", returncode=1)
    with pytest.raises(CreationError):
        await manager.spawn(SpawnConfig(id="x1", use_tmux=True))
    assert spawner.spawned == []
    assert len(manager.registry) == 0


@pytest.mark.asyncio
async def test_attach_failure_removes_new_tmux_session(manager, spawner, mux):
    spawner.error = OSError("attach failed")
    with pytest.raises(CreationError):
        await manager.spawn(SpawnConfig(id="ctt-new", use_tmux=True))
    assert "ctt-new" not in mux.sessions
    assert mux.called("kill") == [("kill", "ctt-new")]


@pytest.mark.asyncio
async def test_reattach_replaces_stale_entry(manager, spawner, mux, events):
    """A second client on the same tmux session evicts the first entry."""
    first = await manager.spawn(SpawnConfig(id="a", session_name="shared", use_tmux=True))
    first_proc = spawner.last
    manager.disconnect("a")
    assert manager.timers.pending("a", GRACE)

    second = await manager.spawn(SpawnConfig(id="b", session_name="shared", use_tmux=True))

    assert manager.get_session("a") is None
    assert not manager.timers.pending("a", GRACE)
    assert first.status is SessionStatus.CLOSED
    assert signal.SIGHUP in first_proc.kills
    assert [r.id for r in manager.registry.find_by_tmux_session("shared")] == ["b"]
    assert second.tmux_session == "shared"
    assert len(mux.called("create")) == 1
    assert events.of("session.spawned", "b")[0].data["reconnected"] is True
    # The stale entry is detached, not closed; its tmux session lives on.
    assert events.of("session.closed", "a") == []
    assert len(events.of("session.detached", "a")) == 1
    assert "shared" in mux.sessions


@pytest.mark.asyncio
async def test_reattach_cancels_copy_mode_instead_of_startup(manager, spawner, mux):
    mux.sessions["shared"] = {"options": {}}
    await manager.spawn(SpawnConfig(id="b", terminal_type="claude-code", session_name="shared", use_tmux=True))
    await asyncio.sleep(0.06)

    assert mux.called("send_cancel") == [("send_cancel", "shared")]
    assert spawner.last.writes == []
    assert ("set_option", "shared", "remain-on-exit", "off") in mux.calls


@pytest.mark.asyncio
async def test_same_id_reattach_is_allowed(manager, spawner, mux):
    first = await manager.spawn(SpawnConfig(id="ctt-1", session_name="ctt-1", use_tmux=True))
    second = await manager.spawn(SpawnConfig(id="ctt-1", session_name="ctt-1", use_tmux=True))

    assert second is not first
    assert manager.get_session("ctt-1") is second
    assert first.status is SessionStatus.CLOSED
    assert len(manager.registry) == 1


@pytest.mark.asyncio
async def test_same_id_replaced_when_tmux_lookup_misses(manager, spawner, mux, events):
    """A missed has-session check starts a new tmux session and signals the old client."""
    first = await manager.spawn(SpawnConfig(id="x", session_name="s", use_tmux=True))
    old = spawner.last
    misses = [False]

    def exists(name):
        if misses:
            return misses.pop()
        return name in mux.sessions

    mux.exists = exists
    second = await manager.spawn(SpawnConfig(id="x", session_name="s", use_tmux=True))

    assert second.tmux_session == "s-2"
    assert manager.get_session("x") is second
    assert first.status is SessionStatus.CLOSED
    assert old.kills == [signal.SIGHUP]
    assert old.listener_count == 0
    assert len(events.of("session.detached", "x")) == 1
    assert events.of("session.closed", "x") == []


@pytest.mark.asyncio
async def test_same_id_kept_when_new_tmux_session_fails(manager, spawner, mux):
    first = await manager.spawn(SpawnConfig(id="x", session_name="s", use_tmux=True))
    old = spawner.last
    del mux.sessions["s"]
    mux.create_error = MultiplexerError("Failed to create tmux session", returncode=1)

    with pytest.raises(CreationError):
        await manager.spawn(SpawnConfig(id="x", session_name="s", use_tmux=True))

    assert manager.get_session("x") is first
    assert first.status is SessionStatus.ACTIVE
    assert old.kills == []


@pytest.mark.asyncio
async def test_concurrent_reattach_leaves_one_entry(manager, spawner, mux):
    """Interleaved attaches to one tmux session still end with a single entry."""
    mux.sessions["shared"] = {"options": {}}
    spawner.delay = 0.01
    await asyncio.gather(
        manager.spawn(SpawnConfig(id="a", session_name="shared", use_tmux=True)),
        manager.spawn(SpawnConfig(id="b", session_name="shared", use_tmux=True)),
    )
    assert len(manager.registry.find_by_tmux_session("shared")) == 1
    assert len(manager.registry) == 1


@pytest.mark.asyncio
async def test_output_is_published(manager, spawner):
    log = EventLog(manager.bus)
    await manager.spawn(SpawnConfig(id="t1"))
    spawner.last.emit(b"hello\r\n")
    out = log.of("session.output", "t1")
    assert len(out) == 1
    assert out[0].data["bytes"] == b"hello\r\n"


@pytest.mark.asyncio
async def test_spawn_config_from_dict_validation(manager):
    with pytest.raises(ValueError):
        await manager.spawn({"terminalType": "bash"})
