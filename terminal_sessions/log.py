"""Unified logging for the session manager.

Every line has the shape ``[HH:MM:SS] LEVEL [tag] message``. The level comes
from ``LOG_LEVEL`` (0=silent, 1=error, 2=warn, 3=info, 4=debug, 5=trace).
The console only shows warnings and errors; the optional unified log file
gets everything at or above the configured level.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVELS = {
    0: logging.CRITICAL + 10,
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
    5: TRACE,
}

# Component tags keyed by logger name.
TAGS = {
    "terminal_sessions.spawn": "PTY",
    "terminal_sessions.pty": "PTY",
    "terminal_sessions.manager": "PTY",
    "terminal_sessions.multiplexer": "Tmux",
    "terminal_sessions.supervisor": "Grace",
    "terminal_sessions.router": "Router",
    "terminal_sessions.timers": "Timers",
    "terminal_sessions.shutdown": "Shutdown",
    "terminal_sessions.transcript": "Transcript",
    "terminal_sessions.api.fastapi_router": "API",
    "terminal_sessions.api.websocket": "API",
    "terminal_sessions.api.app": "API",
}


class TagFilter(logging.Filter):
    """Attach a short component tag to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "tag"):
            record.tag = TAGS.get(record.name, record.name.rsplit(".", 1)[-1])
        return True


class UnifiedFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("[%(asctime)s] %(levelname)-5s [%(tag)s] %(message)s", datefmt="%H:%M:%S")


def level_from_env(default: int = 3) -> int:
    raw = os.environ.get("LOG_LEVEL")
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        value = default
    return LEVELS.get(max(0, min(5, value)), logging.INFO)


def setup_logging(level: Optional[int] = None, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Configure the ``terminal_sessions`` logger tree.

    Args:
        level: A `logging` level; defaults to the value derived from LOG_LEVEL.
        log_file: Optional unified log file, truncated on setup.
    """
    root = logging.getLogger("terminal_sessions")
    root.setLevel(level if level is not None else level_from_env())
    root.handlers.clear()
    root.propagate = False

    formatter = UnifiedFormatter()
    tag_filter = TagFilter()

    console = logging.StreamHandler()
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    console.addFilter(tag_filter)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.addFilter(tag_filter)
        root.addHandler(file_handler)

    return root


class LogSink:
    """``write(level, tag, message)`` adapter over `logging`."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("terminal_sessions")

    def write(self, level: Union[int, str], tag: str, message: str) -> None:
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO
        self._logger.log(level, message, extra={"tag": tag})
