import logging
from typing import Awaitable, Callable, Optional

from .context import SessionContext
from .events import EventBus, EventType, SessionEvent
from .record import SessionRecord, SessionStatus
from .timers import GRACE

logger = logging.getLogger(__name__)


class GraceSupervisor:
    """Disconnect -> grace window -> kill, with reconnect cancelling the kill."""

    def __init__(self, context: SessionContext, bus: EventBus, kill: Callable[[str], Awaitable[bool]]) -> None:
        self.context = context
        self.bus = bus
        self._kill = kill

    @property
    def grace_period(self) -> float:
        return self.context.settings.grace_period

    def disconnect(self, session_id: str) -> bool:
        record = self.context.registry.get(session_id)
        if record is None:
            return False
        logger.debug("Disconnecting %s, starting %ss grace period", record.name, self.grace_period)
        # schedule() replaces any timer already pending for this id.
        self.context.timers.schedule(session_id, GRACE, self.grace_period, lambda: self._expire(session_id))
        record.status = SessionStatus.DISCONNECTED
        self.bus.publish(SessionEvent(EventType.SESSION_DISCONNECTED, record.id, record.name))
        return True

    async def _expire(self, session_id: str) -> None:
        logger.info("Grace period expired for %s, killing session", session_id)
        await self._kill(session_id)

    def _restore(self, session_id: str) -> Optional[SessionRecord]:
        record = self.context.registry.get(session_id)
        if record is not None and record.status is SessionStatus.DISCONNECTED:
            record.status = SessionStatus.ACTIVE
            self.bus.publish(SessionEvent(EventType.SESSION_RECONNECTED, record.id, record.name))
        return record

    def reconnect(self, session_id: str) -> Optional[SessionRecord]:
        if not self.context.timers.cancel(session_id, GRACE):
            return None
        logger.debug("Reconnecting to %s, grace period cancelled", session_id)
        return self._restore(session_id)

    def cancel_disconnect(self, session_id: str) -> bool:
        if not self.context.timers.cancel(session_id, GRACE):
            return False
        self._restore(session_id)
        return True

    def can_reconnect(self, session_id: str) -> bool:
        return session_id in self.context.registry
