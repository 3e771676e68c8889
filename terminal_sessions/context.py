from dataclasses import dataclass, field

from .config import SessionSettings
from .registry import SessionRegistry
from .timers import TimerTable


@dataclass
class SessionContext:
    """State shared by every component of one manager instance.

    Handed explicitly to each component; there is no module-level registry, so
    several independent managers can coexist (e.g. in tests).
    """

    settings: SessionSettings = field(default_factory=SessionSettings)
    registry: SessionRegistry = field(default_factory=SessionRegistry)
    timers: TimerTable = field(default_factory=TimerTable)
