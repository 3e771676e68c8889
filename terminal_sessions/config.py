from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml


ENV_PREFIX = "TERMINAL_SESSIONS"


@dataclass(frozen=True)
class TerminalTypeSpec:
    """Startup behaviour for one terminal type.

    `launch` is a tool command that accepts an optional prompt argument;
    `command` is a fixed line sent as-is. Interactive types get `-i` on the
    direct shell and an extra empty write to flush the first prompt.
    """

    launch: Optional[str] = None
    command: Optional[str] = None
    interactive: bool = False
    tui: bool = False
    env: Dict[str, str] = field(default_factory=dict)


DEFAULT_TERMINAL_TYPES: Dict[str, TerminalTypeSpec] = {
    "claude-code": TerminalTypeSpec(launch="claude"),
    "opencode": TerminalTypeSpec(launch="opencode"),
    "codex": TerminalTypeSpec(launch="codex"),
    "gemini": TerminalTypeSpec(launch="gemini"),
    "orchestrator": TerminalTypeSpec(command='echo "Orchestrator terminal ready"'),
    "docker-ai": TerminalTypeSpec(command="docker ai"),
    "bash": TerminalTypeSpec(interactive=True),
    "dashboard": TerminalTypeSpec(interactive=True),
    "script": TerminalTypeSpec(interactive=True),
    "tui-tool": TerminalTypeSpec(tui=True),
}


def _default_workdir() -> str:
    return os.environ.get("HOME") or os.path.expanduser("~") or os.getcwd()


@dataclass(frozen=True)
class SessionSettings:
    """Constants shared by every component of a session manager instance.

    The delay values are heuristics for racing the multiplexer's redraw cycle
    and may need recalibrating per platform.
    """

    grace_period: float = 30.0
    auto_exec_delay: float = 1.2
    prompt_flush_delay: float = 0.1
    resize_refresh_delay: float = 0.1
    copy_mode_cancel_delay: float = 0.15
    kill_timeout: float = 2.0
    kill_poll_interval: float = 0.1

    default_cols: int = 80
    default_rows: int = 30
    min_cols: int = 20
    max_cols: int = 500
    min_rows: int = 10
    max_rows: int = 200

    default_workdir: str = field(default_factory=_default_workdir)
    shell: str = "bash"
    term: str = "xterm-256color"
    tmux_bin: str = "tmux"
    tmux_config: Optional[str] = None
    env_prefix: str = ENV_PREFIX
    id_session_prefix: str = "ctt-"
    transcript_dir: Optional[str] = None

    terminal_types: Dict[str, TerminalTypeSpec] = field(default_factory=lambda: dict(DEFAULT_TERMINAL_TYPES))

    def terminal_type(self, name: Optional[str]) -> TerminalTypeSpec:
        return self.terminal_types.get(name or "", TerminalTypeSpec())

    def clamp(self, cols: Optional[int], rows: Optional[int]) -> tuple:
        cols = cols or self.default_cols
        rows = rows or self.default_rows
        return (
            max(self.min_cols, min(self.max_cols, int(cols))),
            max(self.min_rows, min(self.max_rows, int(rows))),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            if f.name == "terminal_types":
                continue
            out[f.name] = getattr(self, f.name)
        out["terminal_types"] = {
            name: {
                "launch": spec.launch,
                "command": spec.command,
                "interactive": spec.interactive,
                "tui": spec.tui,
                "env": dict(spec.env),
            }
            for name, spec in self.terminal_types.items()
        }
        return out


_FLOAT_KEYS = {
    "grace_period",
    "auto_exec_delay",
    "prompt_flush_delay",
    "resize_refresh_delay",
    "copy_mode_cancel_delay",
    "kill_timeout",
    "kill_poll_interval",
}
_INT_KEYS = {"default_cols", "default_rows", "min_cols", "max_cols", "min_rows", "max_rows"}
_STR_KEYS = {"default_workdir", "shell", "term", "tmux_bin", "tmux_config", "env_prefix", "id_session_prefix", "transcript_dir"}

_ENV_OVERRIDES = {
    "grace_period": f"{ENV_PREFIX}_GRACE_PERIOD",
    "tmux_bin": f"{ENV_PREFIX}_TMUX_BIN",
    "tmux_config": f"{ENV_PREFIX}_TMUX_CONFIG",
    "transcript_dir": f"{ENV_PREFIX}_TRANSCRIPT_DIR",
}


def _parse_terminal_type(name: str, raw: Any) -> TerminalTypeSpec:
    if raw is None:
        return TerminalTypeSpec()
    if not isinstance(raw, dict):
        raise ValueError(f"terminal type '{name}' must be a mapping")
    env_raw = raw.get("env") or {}
    if not isinstance(env_raw, dict):
        raise ValueError(f"terminal type '{name}' env must be a mapping")
    return TerminalTypeSpec(
        launch=raw.get("launch") or None,
        command=raw.get("command") or None,
        interactive=bool(raw.get("interactive", False)),
        tui=bool(raw.get("tui", False)),
        env={str(k): str(v) for k, v in env_raw.items()},
    )


def parse_settings_data(raw: Any, *, base: Optional[SessionSettings] = None) -> SessionSettings:
    """Build settings from an in-memory document, layered over `base`.

    Unknown keys raise so typos in a config file do not silently fall back
    to defaults.
    """
    settings = base or SessionSettings()
    if raw is None:
        return settings
    if not isinstance(raw, dict):
        raise ValueError("settings document must be a mapping")

    updates: Dict[str, Any] = {}
    for key, value in raw.items():
        if key == "terminal_types":
            if not isinstance(value, dict):
                raise ValueError("terminal_types must be a mapping")
            merged = dict(settings.terminal_types)
            for type_name, type_raw in value.items():
                merged[str(type_name)] = _parse_terminal_type(str(type_name), type_raw)
            updates["terminal_types"] = merged
        elif key in _FLOAT_KEYS:
            updates[key] = float(value)
        elif key in _INT_KEYS:
            updates[key] = int(value)
        elif key in _STR_KEYS:
            updates[key] = None if value is None else str(value)
        else:
            raise ValueError(f"unknown settings key '{key}'")
    return replace(settings, **updates)


def _apply_env(settings: SessionSettings, env: Mapping[str, str]) -> SessionSettings:
    updates: Dict[str, Any] = {}
    for key, var in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        updates[key] = float(value) if key in _FLOAT_KEYS else value
    return replace(settings, **updates) if updates else settings


def load_settings(path: Optional[Union[str, Path]] = None, *, env: Optional[Mapping[str, str]] = None) -> SessionSettings:
    """Load settings from YAML (if any) and apply environment overrides.

    The file path falls back to $TERMINAL_SESSIONS_CONFIG. A missing file is
    not an error; defaults apply.
    """
    env = os.environ if env is None else env
    path = path or env.get(f"{ENV_PREFIX}_CONFIG")
    settings = SessionSettings()
    if path:
        p = Path(os.path.expanduser(str(path)))
        if p.exists():
            with p.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh)
            settings = parse_settings_data(raw, base=settings)
    return _apply_env(settings, env)
