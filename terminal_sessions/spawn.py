from __future__ import annotations

import asyncio
import logging
import signal
from typing import List, Optional

from .context import SessionContext
from .environment import (
    build_environment,
    expand_workdir,
    shell_argv,
    startup_commands,
    tmux_env_exports,
)
from .errors import CreationError, MultiplexerError
from .events import EventBus, EventType, SessionEvent
from .multiplexer import MultiplexerAdapter
from .pty import PtySpawner
from .record import SessionRecord, SessionStatus, SpawnConfig
from .router import EventRouter
from .timers import AUTO_EXEC, COPY_MODE_CANCEL, GRACE, PROMPT_FLUSH

logger = logging.getLogger(__name__)

REMAIN_ON_EXIT = ("remain-on-exit", "off")


class SpawnController:
    """Creates sessions: direct shells or tmux-backed attach clients."""

    def __init__(
        self,
        context: SessionContext,
        multiplexer: MultiplexerAdapter,
        spawner: PtySpawner,
        router: EventRouter,
        bus: EventBus,
    ) -> None:
        self.context = context
        self.multiplexer = multiplexer
        self.spawner = spawner
        self.router = router
        self.bus = bus

    @property
    def settings(self):
        return self.context.settings

    # ------------------------------------------------------------------
    # tmux helpers

    def unique_session_name(self, base: str) -> str:
        if not self.multiplexer.exists(base):
            return base
        counter = 2
        while self.multiplexer.exists(f"{base}-{counter}"):
            counter += 1
        return f"{base}-{counter}"

    def reconcile(self, tmux_session: str, keep: Optional[SessionRecord] = None) -> List[str]:
        """Drop every registry entry attached to ``tmux_session`` except ``keep``.

        Runs without awaiting so the one-entry-per-tmux-session rule holds
        when control returns to the loop.
        """
        removed: List[str] = []
        for stale in self.context.registry.find_by_tmux_session(tmux_session):
            if stale is keep:
                continue
            logger.info("Found old session %s attached to %s, cleaning up", stale.id, tmux_session)
            self._evict(stale)
            removed.append(stale.id)
        return removed

    def _evict(self, stale: SessionRecord) -> None:
        self.context.timers.cancel(stale.id, GRACE)
        self.router.detach(stale)
        # The old attach client only detaches; its tmux session stays alive.
        try:
            stale.process.kill(signal.SIGHUP)
        except (ProcessLookupError, OSError):
            pass

    def _new_session_base(self, config: SpawnConfig) -> str:
        prefix = self.settings.id_session_prefix
        if prefix and config.id.startswith(prefix):
            return config.id
        return config.session_name or config.name or "term"

    # ------------------------------------------------------------------

    def _check_id_free(self, config: SpawnConfig) -> Optional[SessionRecord]:
        """Return the same-id entry this spawn may replace, or raise if the id is taken."""
        existing = self.context.registry.get(config.id)
        if existing is None:
            return None
        if config.use_tmux and existing.tmux_session and existing.tmux_session == config.session_name:
            # Same client re-attaching to its own session.
            return existing
        raise CreationError(f"Session {config.id} already exists", session_id=config.id)

    async def spawn(self, config: SpawnConfig) -> SessionRecord:
        settings = self.settings
        name = config.name or config.id
        cols = config.cols or settings.default_cols
        rows = config.rows or settings.default_rows
        workdir = expand_workdir(config.working_dir, settings.default_workdir)
        env = build_environment(config, settings, cols, rows)

        logger.info("Creating session %s (%s), use_tmux=%s", name, config.terminal_type, config.use_tmux)
        replacing = self._check_id_free(config)

        tmux_session: Optional[str] = None
        reconnecting = False
        created_tmux = False

        if config.use_tmux:
            requested = config.session_name
            exists = bool(requested) and await asyncio.to_thread(self.multiplexer.exists, requested)
            if exists:
                reconnecting = True
                tmux_session = requested
                logger.info("Reconnecting to tmux session %s", tmux_session)
                # Repairs sessions created before the option was applied.
                await asyncio.to_thread(self.multiplexer.set_option, tmux_session, *REMAIN_ON_EXIT)
                self.reconcile(tmux_session)
            else:
                try:
                    tmux_session = await asyncio.to_thread(self.unique_session_name, self._new_session_base(config))
                    logger.info("Creating new tmux session %s", tmux_session)
                    await asyncio.to_thread(
                        self.multiplexer.create,
                        tmux_session,
                        workdir,
                        cols,
                        rows,
                        tmux_env_exports(config),
                        env=env,
                    )
                    created_tmux = True
                    await asyncio.to_thread(self.multiplexer.set_option, tmux_session, *REMAIN_ON_EXIT)
                except MultiplexerError as exc:
                    logger.error("Failed to create tmux session for %s: %s", name, exc)
                    raise CreationError(f"Failed to create tmux session: {exc}", session_id=config.id) from exc
            argv = self.multiplexer.attach_command(tmux_session)
        else:
            argv = shell_argv(config, settings)

        try:
            process = await self.spawner.spawn(argv, cwd=workdir, env=env, cols=cols, rows=rows)
        except Exception as exc:
            logger.error("Failed to create pty for %s: %s", name, exc)
            if created_tmux and tmux_session:
                await self._discard_tmux(tmux_session)
            raise CreationError(f"Failed to create PTY process: {exc}", session_id=config.id) from exc

        # Another spawn may have interleaved while awaiting the pty.
        if tmux_session:
            self.reconcile(tmux_session)
        current = self.context.registry.get(config.id)
        if current is not None and current is replacing:
            # Same client whose tmux session vanished before this attach.
            logger.info("Replacing old session %s", current.id)
            self._evict(current)
        elif current is not None:
            try:
                process.kill(signal.SIGKILL)
            except (ProcessLookupError, OSError):
                pass
            raise CreationError(f"Session {config.id} already exists", session_id=config.id)

        record = SessionRecord(
            id=config.id,
            name=name,
            terminal_type=config.terminal_type,
            process=process,
            pid=process.pid,
            working_dir=workdir,
            status=SessionStatus.ACTIVE,
            tmux_session=tmux_session,
            use_tmux=bool(config.use_tmux),
            cols=cols,
            rows=rows,
        )
        self.context.registry.add(record)
        self.router.attach(record)
        self.bus.publish(
            SessionEvent(
                EventType.SESSION_SPAWNED,
                record.id,
                record.name,
                data={**record.to_payload(), "reconnected": reconnecting},
            )
        )

        if reconnecting:
            self.context.timers.schedule(
                record.id,
                COPY_MODE_CANCEL,
                settings.copy_mode_cancel_delay,
                lambda: asyncio.to_thread(self.multiplexer.send_cancel, tmux_session),
            )
        else:
            self._schedule_startup(record, config)

        logger.info("Session created: %s (pid %s)", name, record.pid)
        return record

    async def _discard_tmux(self, tmux_session: str) -> None:
        try:
            await asyncio.to_thread(self.multiplexer.kill, tmux_session)
        except MultiplexerError as exc:
            logger.warning("Could not remove tmux session %s after failed attach: %s", tmux_session, exc)

    # ------------------------------------------------------------------
    # Auto-execute

    def _schedule_startup(self, record: SessionRecord, config: SpawnConfig) -> None:
        settings = self.settings
        lines = startup_commands(config, settings)
        if lines:
            logger.debug("Scheduling %d startup line(s) for %s", len(lines), record.name)
            self.context.timers.schedule(
                record.id, AUTO_EXEC, settings.auto_exec_delay, lambda: self._write_startup(record, lines)
            )
        if settings.terminal_type(config.terminal_type).interactive:
            # An empty write makes the shell flush its first prompt.
            self.context.timers.schedule(
                record.id, PROMPT_FLUSH, settings.prompt_flush_delay, lambda: self._write_startup(record, [b""])
            )

    def _write_startup(self, record: SessionRecord, lines: list) -> None:
        if self.context.registry.get(record.id) is not record:
            return
        try:
            for line in lines:
                # Never log the content; it may carry escape sequences.
                record.process.write(line)
        except OSError as exc:
            logger.error("Error executing startup command for %s: %s", record.name, exc)
