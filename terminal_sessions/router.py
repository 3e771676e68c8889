import logging
from typing import Optional

from .context import SessionContext
from .events import EventBus
from .record import SessionHandlers, SessionRecord, SessionStatus

logger = logging.getLogger(__name__)


class EventRouter:
    """Wires a session's process output/exit into the event bus.

    All removal paths (self-exit, kill, force-kill) end in ``finalize`` or
    ``detach``, which are idempotent per record.
    """

    def __init__(self, context: SessionContext, bus: EventBus) -> None:
        self.context = context
        self.bus = bus

    def attach(self, record: SessionRecord) -> None:
        def on_output(chunk: bytes) -> None:
            self.bus.output(record.id, record.name, chunk)

        def on_exit(exit_code: Optional[int], signal: Optional[int]) -> None:
            logger.info("Session %s exited: code=%s, signal=%s", record.name, exit_code, signal)
            self.finalize(record, exit_code, signal)

        record.handlers = SessionHandlers(output=on_output, exit=on_exit)
        process = record.process
        process.on_data(on_output)
        process.on_exit(on_exit)
        process.start()

    def _remove(self, record: SessionRecord) -> bool:
        if record.status is SessionStatus.CLOSED:
            return False
        record.clear_handlers()
        record.status = SessionStatus.CLOSED
        if self.context.registry.get(record.id) is record:
            self.context.timers.cancel_session(record.id)
        self.context.registry.discard(record)
        return True

    def detach(self, record: SessionRecord) -> bool:
        """Drop ``record`` from the registry without reporting it closed.

        Publishes ``session.detached`` so per-session consumers can let go.
        """
        if not self._remove(record):
            return False
        self.bus.detached(record.id, record.name)
        return True

    def finalize(self, record: SessionRecord, exit_code: Optional[int], signal: Optional[int]) -> bool:
        if not self._remove(record):
            return False
        self.bus.closed(record.id, record.name, exit_code, signal)
        return True
