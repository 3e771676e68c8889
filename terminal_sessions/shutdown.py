from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any, Callable, Dict, Iterable, Optional

from .context import SessionContext
from .record import SessionStatus
from .router import EventRouter

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Synchronous teardown for process exit.

    Everything here must run without awaiting: it is called from signal
    handlers and from application shutdown hooks where the loop may be
    about to stop.
    """

    def __init__(self, context: SessionContext, router: EventRouter) -> None:
        self.context = context
        self.router = router

    def shutdown_now(self) -> Dict[str, Any]:
        registry = self.context.registry
        stats: Dict[str, Any] = {
            "total": len(registry),
            "timers_cancelled": 0,
            "force_killed": 0,
            "already_exited": 0,
            "errors": [],
        }
        logger.info("Shutting down %d session(s)", stats["total"])

        stats["timers_cancelled"] = self.context.timers.cancel_all()

        for record in list(registry):
            record.clear_handlers()
            process = record.process
            try:
                process.kill(signal.SIGKILL)
                stats["force_killed"] += 1
            except ProcessLookupError:
                stats["already_exited"] += 1
            except Exception as exc:
                logger.error("Error killing session %s during shutdown: %s", record.id, exc)
                stats["errors"].append(f"session {record.id}: {exc}")
            try:
                process.close()
            except Exception as exc:
                stats["errors"].append(f"session {record.id} close: {exc}")
            record.status = SessionStatus.CLOSED

        registry.clear()
        logger.info(
            "Shutdown complete: %d killed, %d already exited, %d error(s)",
            stats["force_killed"],
            stats["already_exited"],
            len(stats["errors"]),
        )
        return stats

    def install_signal_handlers(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
        on_signal: Optional[Callable[[int], Any]] = None,
    ) -> None:
        """Tear everything down on ``signals``, then call ``on_signal`` (e.g. loop.stop)."""
        loop = loop or asyncio.get_running_loop()

        def _handle(signum: int) -> None:
            logger.warning("Received signal %s, shutting down sessions", signal.Signals(signum).name)
            self.shutdown_now()
            if on_signal is not None:
                on_signal(signum)

        for signum in signals:
            loop.add_signal_handler(signum, _handle, signum)
