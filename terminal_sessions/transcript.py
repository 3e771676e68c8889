from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles

from .events import EventBus, EventType, SessionEvent

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def transcript_filename(session_id: str) -> str:
    name = _UNSAFE.sub("_", session_id).strip("._")
    return f"{name or 'session'}.log"


class TranscriptWriter:
    """Appends each session's raw output to ``<directory>/<id>.log``.

    Consumes the event bus through its own queue so file I/O never runs
    inside the pty read callback.
    """

    def __init__(self, bus: EventBus, directory: Union[str, Path]) -> None:
        self.bus = bus
        self.directory = Path(directory).expanduser()
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._handles: Dict[str, Any] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def path(self, session_id: str) -> Path:
        return self.directory / transcript_filename(session_id)

    def start(self) -> None:
        if self.running:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        self._queue = self.bus.subscribe()
        self._task = asyncio.get_running_loop().create_task(self._consume())
        logger.info("Writing transcripts to %s", self.directory)

    async def stop(self) -> None:
        if self._queue is not None:
            self.bus.unsubscribe(self._queue)
        if self._task is not None:
            # Flush whatever was queued before unsubscribing.
            while self._queue is not None and not self._queue.empty():
                await self._handle(self._queue.get_nowait())
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._queue = None
        for session_id in list(self._handles):
            await self._close(session_id)

    async def _consume(self) -> None:
        assert self._queue is not None
        while True:
            event = await self._queue.get()
            try:
                await self._handle(event)
            except OSError as exc:
                logger.error("Transcript write failed for %s: %s", event.session_id, exc)

    async def _handle(self, event: SessionEvent) -> None:
        if event.type is EventType.SESSION_OUTPUT:
            chunk = event.data.get("bytes")
            if not chunk:
                return
            fh = self._handles.get(event.session_id)
            if fh is None:
                fh = await aiofiles.open(self.path(event.session_id), "ab")
                self._handles[event.session_id] = fh
            await fh.write(chunk)
            await fh.flush()
        elif event.type in (EventType.SESSION_CLOSED, EventType.SESSION_DETACHED):
            await self._close(event.session_id)

    async def _close(self, session_id: str) -> None:
        fh = self._handles.pop(session_id, None)
        if fh is not None:
            await fh.close()

    async def read(self, session_id: str) -> bytes:
        path = self.path(session_id)
        if not path.exists():
            return b""
        async with aiofiles.open(path, "rb") as fh:
            return await fh.read()
