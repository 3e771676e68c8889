from __future__ import annotations

import asyncio
import errno
import logging
import signal
import time
from typing import Any, Dict, List, Optional, Union

import psutil

from .config import SessionSettings
from .context import SessionContext
from .errors import InactiveError, MultiplexerError, NotFoundError
from .events import EventBus
from .multiplexer import MultiplexerAdapter, MultiplexerSession, TmuxAdapter
from .pty import LocalPtySpawner, PtySpawner
from .record import SessionRecord, SessionStatus, SpawnConfig
from .router import EventRouter
from .shutdown import ShutdownCoordinator
from .spawn import SpawnController
from .supervisor import GraceSupervisor
from .timers import GRACE, RESIZE_REFRESH

logger = logging.getLogger(__name__)


class TerminalSessionManager:
    """Creates, tracks, reconnects, resizes and tears down terminal sessions."""

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        *,
        multiplexer: Optional[MultiplexerAdapter] = None,
        spawner: Optional[PtySpawner] = None,
        bus: Optional[EventBus] = None,
        context: Optional[SessionContext] = None,
    ) -> None:
        self.context = context or SessionContext(settings=settings or SessionSettings())
        settings = self.context.settings
        self.bus = bus or EventBus()
        self.multiplexer = multiplexer or TmuxAdapter(settings.tmux_bin, settings.tmux_config)
        self.router = EventRouter(self.context, self.bus)
        self.supervisor = GraceSupervisor(self.context, self.bus, self.kill)
        self.spawner = SpawnController(
            self.context,
            self.multiplexer,
            spawner or LocalPtySpawner(),
            self.router,
            self.bus,
        )
        self.shutdown = ShutdownCoordinator(self.context, self.router)
        self._kills: Dict[str, asyncio.Task] = {}

    @property
    def settings(self) -> SessionSettings:
        return self.context.settings

    @property
    def registry(self):
        return self.context.registry

    @property
    def timers(self):
        return self.context.timers

    # ------------------------------------------------------------------
    # Spawn / lookup

    async def spawn(self, config: Union[SpawnConfig, Dict[str, Any]]) -> SessionRecord:
        if isinstance(config, dict):
            config = SpawnConfig.from_dict(config)
        return await self.spawner.spawn(config)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return self.registry.get(session_id)

    def get_by_tmux_session(self, name: str) -> Optional[SessionRecord]:
        matches = self.registry.find_by_tmux_session(name)
        return matches[0] if matches else None

    def _require(self, session_id: str) -> SessionRecord:
        record = self.registry.get(session_id)
        if record is None:
            raise NotFoundError(session_id)
        return record

    # ------------------------------------------------------------------
    # I/O

    async def write(self, session_id: str, data: Union[bytes, str]) -> None:
        record = self._require(session_id)
        if record.status is not SessionStatus.ACTIVE:
            raise InactiveError(session_id, record.status.value)
        async with record.write_lock:
            try:
                await asyncio.to_thread(record.process.write, data)
            except OSError as exc:
                logger.error("Error writing to session %s: %s", session_id, exc)
                raise

    def resize(self, session_id: str, cols: Optional[int], rows: Optional[int]) -> Dict[str, int]:
        record = self._require(session_id)
        cols, rows = self.settings.clamp(cols, rows)
        try:
            record.process.resize(cols, rows)
        except OSError as exc:
            if exc.errno != errno.ENOTTY:
                logger.error("Failed to resize session %s: %s", session_id, exc)
            return {"cols": cols, "rows": rows}
        except Exception as exc:
            logger.error("Failed to resize session %s: %s", session_id, exc)
            return {"cols": cols, "rows": rows}

        record.cols, record.rows = cols, rows
        logger.debug("Resized %s: %sx%s", record.name, cols, rows)
        if record.tmux_session:
            tmux_session = record.tmux_session
            # Redraw after the resize settles; the session may be gone by then.
            self.timers.schedule(
                session_id,
                RESIZE_REFRESH,
                self.settings.resize_refresh_delay,
                lambda: asyncio.to_thread(self.multiplexer.refresh, tmux_session),
            )
        return {"cols": cols, "rows": rows}

    # ------------------------------------------------------------------
    # Grace period

    def disconnect(self, session_id: str) -> bool:
        return self.supervisor.disconnect(session_id)

    def reconnect(self, session_id: str) -> Optional[SessionRecord]:
        return self.supervisor.reconnect(session_id)

    def cancel_disconnect(self, session_id: str) -> bool:
        return self.supervisor.cancel_disconnect(session_id)

    def can_reconnect(self, session_id: str) -> bool:
        return self.supervisor.can_reconnect(session_id)

    # ------------------------------------------------------------------
    # Kill

    async def kill(self, session_id: str, sig: int = signal.SIGTERM, *, kill_tmux: bool = False) -> bool:
        """Terminate a session; returns True whether or not it existed."""
        pending = self._kills.get(session_id)
        if pending is not None:
            await asyncio.shield(pending)
            return True
        record = self.registry.get(session_id)
        if record is None:
            return True
        task = asyncio.get_running_loop().create_task(self._kill_record(record, sig, kill_tmux))
        self._kills[session_id] = task
        task.add_done_callback(lambda t: self._forget_kill(session_id, t))
        await asyncio.shield(task)
        return True

    def _forget_kill(self, session_id: str, task: asyncio.Task) -> None:
        if self._kills.get(session_id) is task:
            del self._kills[session_id]

    async def _wait_removed(self, record: SessionRecord) -> None:
        poll = self.settings.kill_poll_interval
        while self.registry.get(record.id) is record:
            await asyncio.sleep(poll)

    async def _kill_record(self, record: SessionRecord, sig: int, kill_tmux: bool) -> None:
        logger.debug("Killing session %s (pid %s)", record.name, record.pid)
        self.timers.cancel(record.id, GRACE)
        process = record.process
        exit_signal: Optional[int] = None
        try:
            process.kill(sig)
            try:
                await asyncio.wait_for(self._wait_removed(record), timeout=self.settings.kill_timeout)
                logger.debug("Session %s exited gracefully", record.name)
            except asyncio.TimeoutError:
                logger.debug("Force killing session %s", record.name)
                exit_signal = signal.SIGKILL
                try:
                    process.kill(signal.SIGKILL)
                except ProcessLookupError:
                    pass
        except ProcessLookupError:
            pass
        except OSError as exc:
            logger.error("Error killing session %s: %s", record.id, exc)
        finally:
            self.router.finalize(record, getattr(process, "exit_code", None), exit_signal or sig)

        if kill_tmux and record.tmux_session:
            try:
                await asyncio.to_thread(self.multiplexer.kill, record.tmux_session)
            except MultiplexerError as exc:
                logger.warning("Failed to kill tmux session %s: %s", record.tmux_session, exc)

    async def cleanup(self, force: bool = False) -> int:
        """Tear down every session; ``force`` kills now, otherwise each gets a grace window."""
        self.timers.cancel_kind(GRACE)
        ids = [rec.id for rec in self.registry]
        if force:
            await asyncio.gather(*(self.kill(sid) for sid in ids))
            logger.info("Force killed %d session(s)", len(ids))
        else:
            for sid in ids:
                self.disconnect(sid)
            logger.info("Marked %d session(s) for graceful cleanup", len(ids))
        return len(ids)

    def shutdown_now(self) -> Dict[str, Any]:
        return self.shutdown.shutdown_now()

    # ------------------------------------------------------------------
    # tmux

    async def list_tmux_sessions(self) -> List[MultiplexerSession]:
        return await asyncio.to_thread(self.multiplexer.list_sessions)

    async def kill_tmux_session(self, name: str) -> None:
        """Kill a tmux session along with any registry entry attached to it."""
        for record in self.registry.find_by_tmux_session(name):
            await self.kill(record.id)
        await asyncio.to_thread(self.multiplexer.kill, name)

    # ------------------------------------------------------------------
    # Read projections

    def get_all(self) -> List[Dict[str, Any]]:
        return self.registry.summaries()

    def get_stats(self) -> Dict[str, Any]:
        return self.registry.stats()

    def describe(self, session_id: str) -> Dict[str, Any]:
        record = self._require(session_id)
        payload = record.to_payload()
        payload["grace_pending"] = self.timers.pending(session_id, GRACE)
        payload["stats"] = self._process_stats(record)
        return payload

    def _process_stats(self, record: SessionRecord) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"alive": False, "uptime": None}
        try:
            proc = psutil.Process(record.pid)
            with proc.oneshot():
                if proc.status() == psutil.STATUS_ZOMBIE:
                    return stats
                stats["alive"] = True
                stats["uptime"] = max(0.0, time.time() - record.created_at)
                stats["cpu_percent"] = proc.cpu_percent(interval=0.0)
                stats["memory_rss"] = proc.memory_info().rss
                stats["num_threads"] = proc.num_threads()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
        return stats
