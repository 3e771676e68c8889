from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol

from .errors import MultiplexerError

logger = logging.getLogger(__name__)

TMUX_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class MultiplexerSession:
    name: str
    windows: int
    attached: bool
    created_at: Optional[float]

    def to_payload(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "windows": self.windows,
            "attached": self.attached,
            "created_at": self.created_at,
        }


class MultiplexerAdapter(Protocol):
    """Narrow interface over an external terminal multiplexer.

    Every call is a blocking shell invocation; async callers run them through
    ``asyncio.to_thread``.
    """

    def exists(self, name: str) -> bool: ...

    def create(
        self,
        name: str,
        cwd: str,
        cols: int,
        rows: int,
        env_exports: Mapping[str, str],
        *,
        env: Optional[Mapping[str, str]] = None,
    ) -> None: ...

    def attach_command(self, name: str) -> List[str]: ...

    def set_option(self, name: str, key: str, value: str) -> None: ...

    def send_cancel(self, name: str) -> None: ...

    def refresh(self, name: str) -> None: ...

    def kill(self, name: str) -> None: ...

    def list_sessions(self) -> List[MultiplexerSession]: ...


class TmuxAdapter:
    """MultiplexerAdapter backed by the ``tmux`` binary."""

    def __init__(self, binary: str = "tmux", config_path: Optional[str] = None) -> None:
        self.binary = binary
        self.config_path = config_path

    @property
    def available(self) -> bool:
        return shutil.which(self.binary) is not None

    def _run(self, args: List[str], *, env: Optional[Mapping[str, str]] = None) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=TMUX_TIMEOUT_S,
                env=dict(env) if env is not None else None,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise MultiplexerError(f"tmux {args[0]} could not run: {exc}", command=cmd) from exc

    def _checked(self, args: List[str], what: str, *, env: Optional[Mapping[str, str]] = None) -> subprocess.CompletedProcess:
        result = self._run(args, env=env)
        if result.returncode != 0:
            raise MultiplexerError(
                what,
                command=[self.binary, *args],
                returncode=result.returncode,
                stderr=result.stderr or "",
            )
        return result

    def _best_effort(self, args: List[str], what: str) -> None:
        try:
            result = self._run(args)
        except MultiplexerError as exc:
            logger.debug("%s failed: %s", what, exc)
            return
        if result.returncode != 0:
            logger.debug("%s failed (exit=%s): %s", what, result.returncode, (result.stderr or "").strip())

    def exists(self, name: str) -> bool:
        if not name:
            return False
        try:
            result = self._run(["has-session", "-t", f"={name}"])
        except MultiplexerError:
            return False
        return result.returncode == 0

    def create(
        self,
        name: str,
        cwd: str,
        cols: int,
        rows: int,
        env_exports: Mapping[str, str],
        *,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        args: List[str] = []
        if self.config_path:
            args += ["-f", self.config_path]
        args += ["new-session", "-d", "-s", name, "-c", cwd, "-x", str(cols), "-y", str(rows)]
        for key, value in env_exports.items():
            args += ["-e", f"{key}={value}"]
        self._checked(args, f"Failed to create tmux session {name}", env=env)
        logger.info("Tmux session created: %s", name)

    def attach_command(self, name: str) -> List[str]:
        return [self.binary, "attach-session", "-t", name]

    def set_option(self, name: str, key: str, value: str) -> None:
        try:
            self._checked(["set-option", "-t", name, key, value], f"set-option {key} on {name}")
        except MultiplexerError as exc:
            logger.warning("Failed to set %s for %s: %s", key, name, exc)

    def send_cancel(self, name: str) -> None:
        self._best_effort(["send-keys", "-t", name, "-X", "cancel"], f"copy-mode cancel on {name}")

    def refresh(self, name: str) -> None:
        self._best_effort(["refresh-client", "-t", name], f"refresh-client on {name}")

    def kill(self, name: str) -> None:
        self._checked(["kill-session", "-t", f"={name}"], f"Failed to kill tmux session {name}")
        logger.info("Tmux session killed: %s", name)

    def list_sessions(self) -> List[MultiplexerSession]:
        fmt = "#{session_name}\t#{session_windows}\t#{session_attached}\t#{session_created}"
        try:
            result = self._run(["list-sessions", "-F", fmt])
        except MultiplexerError:
            return []
        if result.returncode != 0:
            # No server running means no sessions.
            return []
        sessions: List[MultiplexerSession] = []
        for line in result.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) != 4 or not parts[0]:
                continue
            name, windows, attached, created = parts
            sessions.append(
                MultiplexerSession(
                    name=name,
                    windows=int(windows) if windows.isdigit() else 0,
                    attached=attached.isdigit() and int(attached) > 0,
                    created_at=float(created) if created.isdigit() else None,
                )
            )
        return sessions
