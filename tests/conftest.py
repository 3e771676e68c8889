"""Pytest configuration and fixtures.

The fakes here stand in for the pty primitive and tmux so control flow
(grace expiry, kill races, reconciliation) runs deterministically with
millisecond-scale settings.
"""

import asyncio
import itertools
import signal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from terminal_sessions.config import SessionSettings
from terminal_sessions.errors import MultiplexerError
from terminal_sessions.events import EventBus
from terminal_sessions.manager import TerminalSessionManager
from terminal_sessions.multiplexer import MultiplexerSession

# Far above any real pid_max so psutil never finds these.
_pids = itertools.count(900_000_000)


class FakeProcess:
    def __init__(self, argv, *, cwd=None, env=None, cols=80, rows=30, ignores=()):
        self.pid = next(_pids)
        self.argv = list(argv)
        self.cwd = cwd
        self.env = dict(env or {})
        self.cols = cols
        self.rows = rows
        self.ignores = set(ignores)
        self.writes: List[Any] = []
        self.resizes: List[tuple] = []
        self.kills: List[int] = []
        self.started = False
        self.closed = False
        self.exited = False
        self.exit_code: Optional[int] = None
        self.exit_signal: Optional[int] = None
        self.write_error: Optional[OSError] = None
        self.resize_error: Optional[Exception] = None
        self.kill_error: Optional[Exception] = None
        self._data_listeners: List = []
        self._exit_listeners: List = []

    def on_data(self, listener) -> None:
        self._data_listeners.append(listener)

    def on_exit(self, listener) -> None:
        self._exit_listeners.append(listener)

    def clear_listeners(self) -> None:
        self._data_listeners.clear()
        self._exit_listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._data_listeners) + len(self._exit_listeners)

    def start(self) -> None:
        self.started = True

    def write(self, data) -> int:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(data)
        return len(data)

    def resize(self, cols: int, rows: int) -> None:
        if self.resize_error is not None:
            raise self.resize_error
        self.resizes.append((cols, rows))

    def kill(self, sig: int = signal.SIGTERM) -> None:
        if self.kill_error is not None:
            raise self.kill_error
        if self.exited:
            raise ProcessLookupError(f"process {self.pid} already exited")
        self.kills.append(sig)
        if sig in self.ignores:
            return
        try:
            asyncio.get_running_loop().call_soon(self.exit, None, sig)
        except RuntimeError:
            self.exit(None, sig)

    def emit(self, chunk: bytes) -> None:
        for listener in list(self._data_listeners):
            listener(chunk)

    def exit(self, exit_code: Optional[int], sig: Optional[int] = None) -> None:
        if self.exited:
            return
        self.exited = True
        self.exit_code, self.exit_signal = exit_code, sig
        for listener in list(self._exit_listeners):
            listener(exit_code, sig)

    def close(self) -> None:
        self.closed = True


class FakeSpawner:
    def __init__(self) -> None:
        self.spawned: List[FakeProcess] = []
        self.error: Optional[Exception] = None
        self.ignores: tuple = ()
        self.delay = 0.0

    async def spawn(self, argv, *, cwd, env, cols, rows) -> FakeProcess:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        proc = FakeProcess(argv, cwd=cwd, env=env, cols=cols, rows=rows, ignores=self.ignores)
        self.spawned.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.spawned[-1]


class FakeMultiplexer:
    def __init__(self) -> None:
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.create_error: Optional[MultiplexerError] = None

    def exists(self, name: str) -> bool:
        self.calls.append(("exists", name))
        return name in self.sessions

    def create(self, name, cwd, cols, rows, env_exports, *, env=None) -> None:
        self.calls.append(("create", name, cwd, cols, rows, dict(env_exports)))
        if self.create_error is not None:
            raise self.create_error
        self.sessions[name] = {"cwd": cwd, "cols": cols, "rows": rows, "options": {}}

    def attach_command(self, name: str) -> List[str]:
        return ["tmux", "attach-session", "-t", name]

    def set_option(self, name: str, key: str, value: str) -> None:
        self.calls.append(("set_option", name, key, value))
        if name in self.sessions:
            self.sessions[name]["options"][key] = value

    def send_cancel(self, name: str) -> None:
        self.calls.append(("send_cancel", name))

    def refresh(self, name: str) -> None:
        self.calls.append(("refresh", name))

    def kill(self, name: str) -> None:
        self.calls.append(("kill", name))
        if name not in self.sessions:
            raise MultiplexerError(f"Failed to kill tmux session {name}", returncode=1, stderr="can't find session")
        del self.sessions[name]

    def list_sessions(self) -> List[MultiplexerSession]:
        return [MultiplexerSession(name=n, windows=1, attached=False, created_at=None) for n in sorted(self.sessions)]

    def called(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]


def fast_settings(tmp_path, **overrides) -> SessionSettings:
    values = dict(
        grace_period=0.05,
        auto_exec_delay=0.02,
        prompt_flush_delay=0.01,
        resize_refresh_delay=0.01,
        copy_mode_cancel_delay=0.01,
        kill_timeout=0.05,
        kill_poll_interval=0.005,
        default_workdir=str(tmp_path),
    )
    values.update(overrides)
    return SessionSettings(**values)


class EventLog:
    """Records every bus event for assertions."""

    def __init__(self, bus: EventBus) -> None:
        self.events: List = []
        bus.add_listener(self.events.append)

    def of(self, type_value: str, session_id: Optional[str] = None) -> List:
        return [
            e for e in self.events
            if e.type.value == type_value and (session_id is None or e.session_id == session_id)
        ]


@pytest.fixture
def settings(tmp_path):
    return fast_settings(tmp_path)


@pytest.fixture
def spawner():
    return FakeSpawner()


@pytest.fixture
def mux():
    return FakeMultiplexer()


@pytest_asyncio.fixture
async def manager(settings, spawner, mux):
    mgr = TerminalSessionManager(settings, multiplexer=mux, spawner=spawner)
    yield mgr
    mgr.shutdown_now()
    await asyncio.sleep(0)


@pytest.fixture
def events(manager):
    return EventLog(manager.bus)
