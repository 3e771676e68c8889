"""Terminal Sessions - pty-backed terminal session manager with tmux persistence."""

from .manager import TerminalSessionManager
from .record import SessionRecord, SessionStatus, SpawnConfig
from .registry import SessionRegistry
from .context import SessionContext
from .config import SessionSettings, TerminalTypeSpec, load_settings
from .events import EventBus, SessionEvent, EventType
from .errors import SessionError, CreationError, NotFoundError, InactiveError, MultiplexerError
from .multiplexer import MultiplexerAdapter, MultiplexerSession, TmuxAdapter
from .pty import PtyProcess, PtySpawner, LocalPtySpawner
from .shutdown import ShutdownCoordinator
from .transcript import TranscriptWriter
from .log import setup_logging, LogSink

__all__ = [
    "TerminalSessionManager",
    "SessionRecord",
    "SessionStatus",
    "SpawnConfig",
    "SessionRegistry",
    "SessionContext",
    "SessionSettings",
    "TerminalTypeSpec",
    "load_settings",
    "EventBus",
    "SessionEvent",
    "EventType",
    "SessionError",
    "CreationError",
    "NotFoundError",
    "InactiveError",
    "MultiplexerError",
    "MultiplexerAdapter",
    "MultiplexerSession",
    "TmuxAdapter",
    "PtyProcess",
    "PtySpawner",
    "LocalPtySpawner",
    "ShutdownCoordinator",
    "TranscriptWriter",
    "setup_logging",
    "LogSink",
]
