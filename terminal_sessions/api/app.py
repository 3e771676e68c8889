import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..config import SessionSettings
from ..manager import TerminalSessionManager
from ..transcript import TranscriptWriter
from .fastapi_router import router as sessions_router
from .websocket import router as events_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager: TerminalSessionManager = app.state.manager
    transcript_dir = manager.settings.transcript_dir
    if transcript_dir:
        app.state.transcripts = TranscriptWriter(manager.bus, transcript_dir)
        app.state.transcripts.start()

    yield

    logger.info("Stopping terminal sessions API")
    manager.shutdown_now()
    if app.state.transcripts is not None:
        await app.state.transcripts.stop()


def create_app(
    manager: Optional[TerminalSessionManager] = None,
    settings: Optional[SessionSettings] = None,
) -> FastAPI:
    """Build the HTTP/websocket app around ``manager`` (or a new one from ``settings``)."""
    app = FastAPI(title="Terminal Sessions", lifespan=lifespan)
    app.state.manager = manager or TerminalSessionManager(settings)
    app.state.transcripts = None
    app.include_router(sessions_router)
    app.include_router(events_router)
    return app
