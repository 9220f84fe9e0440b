from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .kernel.rules import match_rules
from .kernel.settings import SettingsStore, create_sample
from .util.obslog import setup_root_json_logging


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _resolve_root(raw: str) -> Path:
    return Path(raw or ".").expanduser().resolve()


def cmd_run(args: argparse.Namespace) -> int:
    from .ports.web.main import PortBindExhausted, run_server

    root = _resolve_root(args.root)
    if not root.is_dir():
        print(f"error: not a directory: {root}", file=sys.stderr)
        return 2
    setup_root_json_logging(component="ambient", level=args.log_level)
    try:
        return run_server(root, host=args.host or None, port=args.port, log_level=args.log_level or "info")
    except PortBindExhausted as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


def cmd_init(args: argparse.Namespace) -> int:
    root = _resolve_root(args.root)
    path = create_sample(root)
    _print_json({"ok": True, "result": {"config": str(path)}})
    return 0


def cmd_rules(args: argparse.Namespace) -> int:
    root = _resolve_root(args.root)
    store = SettingsStore(root)
    snap = store.snapshot()
    if store.last_error:
        print(f"warning: {store.last_error}", file=sys.stderr)
    rules = match_rules(args.path, snap.ruleset())
    _print_json(
        {
            "ok": True,
            "result": {
                "path": args.path,
                "rules": [{"name": r.name, "priority": r.priority, "description": r.description} for r in rules],
            },
        }
    )
    return 0


def cmd_connect(args: argparse.Namespace) -> int:
    from .client.console import run_console

    setup_root_json_logging(component="ambient.console", level=args.log_level or "WARNING")
    return run_console(args.url, max_attempts=args.max_attempts, delay_ms=args.delay_ms)


def cmd_version(_: argparse.Namespace) -> int:
    print(__version__)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ambient", description="Ambient Watcher (background code review over a local model)")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Watch a project and serve the event stream")
    p_run.add_argument("--root", default=".", help="Project root to watch (default: .)")
    p_run.add_argument("--host", default="", help="Bind host (default: from settings, 127.0.0.1)")
    p_run.add_argument("--port", type=int, default=None, help="First port to try (default: from settings, 38080)")
    p_run.add_argument("--log-level", default="", help="Log level (default: $AMBIENT_LOG_LEVEL or INFO)")
    p_run.set_defaults(func=cmd_run)

    p_init = sub.add_parser("init", help="Write a sample .ambient/config.yaml")
    p_init.add_argument("--root", default=".", help="Project root (default: .)")
    p_init.set_defaults(func=cmd_init)

    p_rules = sub.add_parser("rules", help="Show the reviews that would run for PATH, in order")
    p_rules.add_argument("path", help="Path relative to the project root")
    p_rules.add_argument("--root", default=".", help="Project root (default: .)")
    p_rules.set_defaults(func=cmd_rules)

    p_connect = sub.add_parser("connect", help="Follow the event stream in the terminal")
    p_connect.add_argument("--url", default="ws://127.0.0.1:38080/ws", help="WebSocket URL")
    p_connect.add_argument("--max-attempts", type=int, default=5, help="Reconnect attempts before giving up")
    p_connect.add_argument("--delay-ms", type=int, default=3000, help="Delay between reconnect attempts")
    p_connect.add_argument("--log-level", default="", help="Log level (default: WARNING)")
    p_connect.set_defaults(func=cmd_connect)

    p_version = sub.add_parser("version", help="Show version")
    p_version.set_defaults(func=cmd_version)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
