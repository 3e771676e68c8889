from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

GRACE = "grace"
AUTO_EXEC = "auto-exec"
PROMPT_FLUSH = "prompt-flush"
RESIZE_REFRESH = "resize-refresh"
COPY_MODE_CANCEL = "copy-mode-cancel"

TimerKey = Tuple[str, str]


class TimerTable:
    """Cancelable delayed callbacks keyed by (session id, kind).

    Scheduling a key that is already pending cancels the earlier task first,
    so repeated disconnects or resizes never leak timers.
    """

    def __init__(self) -> None:
        self._tasks: Dict[TimerKey, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def schedule(self, session_id: str, kind: str, delay: float, callback: Callable[[], Any]) -> asyncio.Task:
        key = (session_id, kind)
        self.cancel(session_id, kind)
        task = asyncio.get_running_loop().create_task(self._run(key, delay, callback))
        self._tasks[key] = task
        return task

    async def _run(self, key: TimerKey, delay: float, callback: Callable[[], Any]) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        # Fired: drop the entry before running so the callback may reschedule.
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer %s for session %s failed", key[1], key[0])

    def pending(self, session_id: str, kind: str) -> bool:
        task = self._tasks.get((session_id, kind))
        return task is not None and not task.done()

    def get(self, session_id: str, kind: str) -> Optional[asyncio.Task]:
        return self._tasks.get((session_id, kind))

    def cancel(self, session_id: str, kind: str) -> bool:
        task = self._tasks.pop((session_id, kind), None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def cancel_session(self, session_id: str) -> int:
        keys = [key for key in self._tasks if key[0] == session_id]
        for sid, kind in keys:
            self.cancel(sid, kind)
        return len(keys)

    def cancel_kind(self, kind: str) -> int:
        keys = [key for key in self._tasks if key[1] == kind]
        for sid, k in keys:
            self.cancel(sid, k)
        return len(keys)

    def cancel_all(self) -> int:
        count = 0
        for key in list(self._tasks):
            if self.cancel(*key):
                count += 1
        return count
