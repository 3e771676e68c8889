from __future__ import annotations

import os
import shlex
from typing import Dict, List, Mapping, Optional

from .config import SessionSettings
from .record import SpawnConfig

# Variables set by the emulator hosting *this* process. Leaking them into a
# session makes tools inside it believe they run in that emulator.
HOST_TERMINAL_VARS = (
    "WT_SESSION",
    "WT_PROFILE_ID",
    "WEZTERM_EXECUTABLE",
    "WEZTERM_PANE",
    "ALACRITTY_SOCKET",
    "KITTY_WINDOW_ID",
)

TUI_NAME_HINTS = ("pyradio", "lazygit", "bottom", "micro")

DARK_COLORFGBG = "15;0"
LIGHT_COLORFGBG = "0;15"


def expand_workdir(path: Optional[str], default: str) -> str:
    if not path:
        return default
    expanded = os.path.expanduser(path)
    return expanded or default


def color_fg_bg(is_dark: bool) -> str:
    return DARK_COLORFGBG if is_dark else LIGHT_COLORFGBG


def is_tui_tool(config: SpawnConfig, settings: SessionSettings) -> bool:
    if settings.terminal_type(config.terminal_type).tui:
        return True
    name = (config.name or "").lower()
    return any(hint in name for hint in TUI_NAME_HINTS)


def build_environment(
    config: SpawnConfig,
    settings: SessionSettings,
    cols: int,
    rows: int,
    *,
    base_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Environment for a session's shell or tmux client."""
    base = dict(os.environ if base_env is None else base_env)
    for var in HOST_TERMINAL_VARS:
        base.pop(var, None)

    type_spec = settings.terminal_type(config.terminal_type)
    name = config.name or config.id
    prefix = settings.env_prefix

    env: Dict[str, str] = {**base, **type_spec.env, **config.env}
    env.update(
        {
            "TERM": settings.term,
            "LANG": base.get("LANG") or "en_US.UTF-8",
            "LC_ALL": base.get("LC_ALL") or "en_US.UTF-8",
            "COLUMNS": str(cols),
            "LINES": str(rows),
            "AGENT_NAME": name,
            "TERMINAL_TYPE": config.terminal_type,
            f"{prefix}_PROCESS": "true",
            f"{prefix}_TYPE": config.terminal_type,
            f"{prefix}_NAME": name,
            f"{prefix}_ID": config.id,
            "CLAUDE_CODE_AUTO_CONNECT_IDE": "false",
            "COLORTERM": "truecolor",
            "FORCE_COLOR": "1",
            "COLORFGBG": color_fg_bg(config.is_dark),
        }
    )
    if is_tui_tool(config, settings):
        env["NCURSES_NO_UTF8_ACS"] = "1"
        env["LESSCHARSET"] = "utf-8"
    return env


def tmux_env_exports(config: SpawnConfig) -> Dict[str, str]:
    """Variables passed with ``-e`` so they exist inside the tmux session itself."""
    return {
        "COLORFGBG": color_fg_bg(config.is_dark),
        "COLORTERM": "truecolor",
        "FORCE_COLOR": "1",
    }


def shell_argv(config: SpawnConfig, settings: SessionSettings) -> List[str]:
    if settings.terminal_type(config.terminal_type).interactive:
        return [settings.shell, "-i"]
    return [settings.shell]


def _line(cmd: str) -> str:
    return cmd if cmd.endswith("\n") else cmd + "\n"


def startup_commands(config: SpawnConfig, settings: SessionSettings) -> List[str]:
    """Lines to type into a fresh session, newline-terminated, in order.

    Explicit ``commands`` win over a single ``command``, which wins over the
    terminal type's default. A prompt equal to the tool's own name is dropped
    so the tool is not launched with itself as argument.
    """
    if config.commands is not None:
        return [_line(cmd) for cmd in config.commands]
    if config.command:
        return [_line(config.command)]

    type_spec = settings.terminal_type(config.terminal_type)
    if type_spec.launch:
        prompt = config.prompt or ""
        if prompt and prompt != type_spec.launch:
            return [_line(f"{type_spec.launch} {shlex.quote(prompt)}")]
        return [_line(type_spec.launch)]
    if type_spec.command:
        return [_line(type_spec.command)]
    return []
