import argparse
import logging
import sys
from datetime import datetime
from typing import List, Optional

import yaml

from ..config import load_settings
from ..log import setup_logging
from ..multiplexer import TmuxAdapter

logger = logging.getLogger(__name__)


def _format_created(ts: Optional[float]) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def cmd_serve(args) -> int:
    import uvicorn

    from ..api.app import create_app

    setup_logging(log_file=args.log_file)
    settings = load_settings(args.config)
    app = create_app(settings=settings)
    # uvicorn owns SIGINT/SIGTERM; its shutdown runs the app lifespan, which tears sessions down.
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
    return 0


def cmd_tmux_ls(args) -> int:
    settings = load_settings(args.config)
    adapter = TmuxAdapter(settings.tmux_bin, settings.tmux_config)
    if not adapter.available:
        print(f"{settings.tmux_bin} not found on PATH", file=sys.stderr)
        return 1
    sessions = adapter.list_sessions()
    if not sessions:
        print("No tmux sessions.")
        return 0
    print(f"{'NAME':<32} {'WINDOWS':>7} {'ATTACHED':>8}  CREATED")
    for s in sessions:
        print(f"{s.name:<32} {s.windows:>7} {('yes' if s.attached else 'no'):>8}  {_format_created(s.created_at)}")
    return 0


def cmd_config(args) -> int:
    settings = load_settings(args.config)
    yaml.safe_dump(settings.to_dict(), sys.stdout, sort_keys=False, default_flow_style=False)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="terminal-sessions", description="Terminal sessions CLI")
    parser.add_argument("--config", default=None, help="Settings YAML (default: $TERMINAL_SESSIONS_CONFIG)")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP/websocket server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8765, help="Port (default: 8765)")
    serve_parser.add_argument("--log-file", default=None, help="Unified log file (truncated on start)")

    subparsers.add_parser("tmux-ls", help="List tmux sessions")
    subparsers.add_parser("config", help="Print effective settings as YAML")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == "serve":
            return cmd_serve(args)
        if args.command == "tmux-ls":
            return cmd_tmux_ls(args)
        if args.command == "config":
            return cmd_config(args)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
