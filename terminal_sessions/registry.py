from collections import Counter
from typing import Dict, Iterator, List, Optional

from .record import SessionRecord, SessionStatus


class SessionRegistry:
    """In-memory map of session id -> SessionRecord.

    Mutated only from the event loop thread, so no locking. Any handler that
    removes an entry goes through ``discard``/``pop`` which also drops the
    record's handler references.
    """

    def __init__(self) -> None:
        self._records: Dict[str, SessionRecord] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SessionRecord]:
        return iter(list(self._records.values()))

    def get(self, session_id: str) -> Optional[SessionRecord]:
        return self._records.get(session_id)

    def add(self, record: SessionRecord) -> None:
        if record.id in self._records:
            raise ValueError(f"Session {record.id} is already registered")
        self._records[record.id] = record

    def pop(self, session_id: str) -> Optional[SessionRecord]:
        record = self._records.pop(session_id, None)
        if record is not None:
            record.clear_handlers()
        return record

    def discard(self, record: SessionRecord) -> bool:
        """Remove ``record`` only if it is still the entry stored under its id."""
        record.clear_handlers()
        if self._records.get(record.id) is record:
            del self._records[record.id]
            return True
        return False

    def find_by_tmux_session(self, name: str, *, exclude: Optional[str] = None) -> List[SessionRecord]:
        return [
            rec
            for rec in self._records.values()
            if rec.tmux_session == name and rec.id != exclude
        ]

    def clear(self) -> List[SessionRecord]:
        records = list(self._records.values())
        for rec in records:
            rec.clear_handlers()
        self._records.clear()
        return records

    def summaries(self) -> List[dict]:
        return [rec.to_summary() for rec in self._records.values()]

    def stats(self) -> dict:
        records = list(self._records.values())
        return {
            "total_sessions": len(records),
            "active_sessions": sum(1 for rec in records if rec.status is SessionStatus.ACTIVE),
            "counts_by_type": dict(Counter(rec.terminal_type for rec in records)),
            "counts_by_status": dict(Counter(rec.status.value for rec in records)),
        }
