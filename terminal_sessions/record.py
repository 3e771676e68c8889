from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import asyncio
import time


class SessionStatus(str, Enum):
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


@dataclass
class SpawnConfig:
    """Caller-supplied description of a session to create or reattach."""

    id: str
    terminal_type: str = "bash"
    name: Optional[str] = None
    working_dir: Optional[str] = None
    cols: Optional[int] = None
    rows: Optional[int] = None
    env: Dict[str, str] = field(default_factory=dict)
    use_tmux: bool = False
    session_name: Optional[str] = None
    is_dark: bool = True
    commands: Optional[List[str]] = None
    command: Optional[str] = None
    prompt: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SpawnConfig":
        if not raw.get("id"):
            raise ValueError("spawn config requires an id")
        commands = raw.get("commands")
        if commands is not None and not isinstance(commands, list):
            raise ValueError("commands must be a list of strings")
        env = raw.get("env") or {}
        if not isinstance(env, dict):
            raise ValueError("env must be a mapping")
        return cls(
            id=str(raw["id"]),
            terminal_type=str(raw.get("terminal_type") or raw.get("terminalType") or "bash"),
            name=raw.get("name"),
            working_dir=raw.get("working_dir") or raw.get("workingDir"),
            cols=raw.get("cols"),
            rows=raw.get("rows"),
            env={str(k): str(v) for k, v in env.items()},
            use_tmux=bool(raw.get("use_tmux", raw.get("useTmux", False))),
            session_name=raw.get("session_name") or raw.get("sessionName"),
            is_dark=bool(raw.get("is_dark", raw.get("isDark", True))),
            commands=[c if isinstance(c, str) else "" for c in commands] if commands is not None else None,
            command=raw.get("command") if isinstance(raw.get("command"), str) else None,
            prompt=raw.get("prompt") or raw.get("start_command") or raw.get("startCommand"),
        )


@dataclass
class SessionHandlers:
    """Output/exit callbacks wired onto a session's process handle."""

    output: Optional[Callable[[bytes], Any]] = None
    exit: Optional[Callable[[Optional[int], Optional[int]], Any]] = None


@dataclass
class SessionRecord:
    """One tracked terminal session. Owned exclusively by the registry."""

    id: str
    name: str
    terminal_type: str
    process: Any
    pid: int
    working_dir: str
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: float = field(default_factory=time.time)
    tmux_session: Optional[str] = None
    use_tmux: bool = False
    cols: int = 80
    rows: int = 30
    handlers: Optional[SessionHandlers] = None
    # Serializes writes so concurrent callers never interleave bytes.
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def clear_handlers(self) -> None:
        """Drop callback references so closures are not retained after exit."""
        if self.handlers is None:
            return
        detach = getattr(self.process, "clear_listeners", None)
        if detach is not None:
            detach()
        self.handlers = None

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "terminal_type": self.terminal_type,
            "pid": self.pid,
            "status": self.status.value,
            "created_at": self.created_at,
        }

    def to_payload(self) -> Dict[str, Any]:
        payload = self.to_summary()
        payload.update(
            {
                "working_dir": self.working_dir,
                "tmux_session": self.tmux_session,
                "use_tmux": self.use_tmux,
                "cols": self.cols,
                "rows": self.rows,
            }
        )
        return payload
