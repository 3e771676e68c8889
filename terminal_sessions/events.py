from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set
from asyncio import Queue as AsyncQueue
from asyncio import QueueFull
import base64
import logging
import time

logger = logging.getLogger(__name__)


class EventType(Enum):
    SESSION_SPAWNED = "session.spawned"
    SESSION_OUTPUT = "session.output"
    SESSION_DISCONNECTED = "session.disconnected"
    SESSION_RECONNECTED = "session.reconnected"
    SESSION_CLOSED = "session.closed"
    # Removed without an exit, e.g. replaced by a newer client of its tmux session.
    SESSION_DETACHED = "session.detached"


@dataclass
class SessionEvent:
    type: EventType
    session_id: str
    name: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.data)
        chunk = data.get("bytes")
        if isinstance(chunk, (bytes, bytearray)):
            # JSON transports get text plus a lossless base64 copy.
            data["bytes"] = base64.b64encode(bytes(chunk)).decode("ascii")
            data["text"] = bytes(chunk).decode("utf-8", errors="replace")
        return {
            "type": self.type.value,
            "id": self.session_id,
            "name": self.name,
            "timestamp": self.timestamp,
            "data": data,
        }


Listener = Callable[[SessionEvent], Any]


class EventBus:
    """In-process fan-out of session events.

    Consumers either take a queue (``subscribe``) or register a plain callback
    (``add_listener``). Publishing never blocks: a subscriber whose bounded
    queue is full misses that event instead of stalling the pty reader.
    """

    def __init__(self) -> None:
        self._subscribers: Set[AsyncQueue] = set()
        self._listeners: List[Listener] = []
        self.dropped = 0

    def subscribe(self, maxsize: int = 0) -> AsyncQueue:
        q: AsyncQueue = AsyncQueue(maxsize=maxsize)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: AsyncQueue) -> None:
        self._subscribers.discard(q)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def publish(self, event: SessionEvent) -> None:
        for q in list(self._subscribers):
            try:
                q.put_nowait(event)
            except QueueFull:
                self.dropped += 1
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %s", event.type.value)

    def output(self, session_id: str, name: str, chunk: bytes) -> None:
        self.publish(SessionEvent(EventType.SESSION_OUTPUT, session_id, name, data={"bytes": chunk}))

    def closed(self, session_id: str, name: str, exit_code: Optional[int], signal: Optional[int]) -> None:
        self.publish(
            SessionEvent(
                EventType.SESSION_CLOSED,
                session_id,
                name,
                data={"exit_code": exit_code, "signal": signal},
            )
        )

    def detached(self, session_id: str, name: str) -> None:
        self.publish(SessionEvent(EventType.SESSION_DETACHED, session_id, name))
