"""
gsbctl: command-line companion for the Gesture Sensor Bridge daemon.

Works with the daemon's file-based interface under the session base
directory (status.json, events.jsonl, daemon.pid).

Commands:
- status: Daemon liveness and status.json
- events: Last published presence/gesture events, optionally followed
- stop: Stop the running daemon
- display on|off: Run the configured display command once
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from dataclasses import asdict
from typing import Any, Optional

from .config import load_config
from .errors import ConfigError
from .event_emitter import read_events
from .power_action import CommandPowerAction
from .singleton import check_daemon, stop_process


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime())


def _print(obj: Any, *, json_mode: bool) -> None:
    if json_mode or not isinstance(obj, str):
        print(json.dumps(obj, indent=2, sort_keys=True))
    else:
        print(obj)


def cmd_status(*, base_dir: str, json_mode: bool) -> int:
    """Show daemon liveness and status.json.

    Returns:
        Exit code: 0 if the daemon is running, 1 otherwise.
    """
    existing = check_daemon(base_dir)
    status_path = os.path.join(base_dir, "status.json")

    status: Optional[dict[str, Any]]
    try:
        with open(status_path, "r", encoding="utf-8") as f:
            status = json.load(f)
    except FileNotFoundError:
        status = None
    except json.JSONDecodeError:
        status = {"error": "invalid_json", "path": status_path}

    running = bool(existing and existing.is_alive)

    if json_mode:
        _print(
            {
                "schema_version": 1,
                "timestamp": _now_iso(),
                "daemon": asdict(existing) if existing else {"running": False},
                "status": status,
            },
            json_mode=True,
        )
    else:
        if running:
            print("gsb daemon: RUNNING")
            print(f"  pid: {existing.pid}")
            print(f"  port: {existing.port}")
            print(f"  started: {existing.started}")
        else:
            print("gsb daemon: NOT RUNNING")
        if status is not None:
            print("")
            print("status.json:")
            print(json.dumps(status, indent=2, sort_keys=True))

    return 0 if running else 1


def cmd_events(*, base_dir: str, lines: int, follow: bool, json_mode: bool,
               poll_interval: float = 0.5) -> int:
    """Print the last N events; with follow, keep printing new ones."""
    events_path = os.path.join(base_dir, "events.jsonl")
    events = read_events(events_path, lines)

    if json_mode and not follow:
        _print(
            {
                "schema_version": 1,
                "timestamp": _now_iso(),
                "path": events_path,
                "events": events,
            },
            json_mode=True,
        )
        return 0

    for event in events:
        print(json.dumps(event, sort_keys=True))

    if not follow:
        return 0

    last_sequence = events[-1].get("sequence", 0) if events else 0
    try:
        while True:
            time.sleep(poll_interval)
            for event in read_events(events_path):
                if event.get("sequence", 0) > last_sequence:
                    print(json.dumps(event, sort_keys=True), flush=True)
                    last_sequence = event.get("sequence", 0)
    except KeyboardInterrupt:
        return 0


def cmd_stop(*, base_dir: str, timeout_s: float, json_mode: bool) -> int:
    existing = check_daemon(base_dir)
    if not existing or not existing.is_alive:
        _print({"stopped": False, "reason": "not_running"} if json_mode else "Daemon not running",
               json_mode=json_mode)
        return 1

    stopped = stop_process(existing.pid, timeout_s)
    if json_mode:
        _print({"stopped": stopped, "pid": existing.pid}, json_mode=True)
    else:
        print(f"Stopped daemon (PID {existing.pid})" if stopped
              else f"Could not stop daemon (PID {existing.pid})")
    return 0 if stopped else 1


def cmd_display(*, config_path: Optional[str], state: str, json_mode: bool) -> int:
    """Run the configured display command once, outside the daemon."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    action = CommandPowerAction(
        on_command=config.display_on_command,
        off_command=config.display_off_command,
        env=config.display_env,
        timeout=config.action_timeout,
    )
    ok = action.run_command(state == "on")
    if json_mode:
        _print({"display": state, "success": ok}, json_mode=True)
    else:
        print(f"Display {state}: {'ok' if ok else 'FAILED'}")
    return 0 if ok else 1


def _resolve_base_dir(override: Optional[str], config_path: Optional[str]) -> str:
    """--base-dir wins, then the config file's base_dir, then the default."""
    if override:
        return override
    return load_config(config_path).base_dir


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gsbctl", description="Gesture Sensor Bridge control")
    parser.add_argument("--base-dir", default=None, help="Daemon session directory")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--json", action="store_true", help="Machine-readable output")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show daemon status")

    p_events = sub.add_parser("events", help="Show published events")
    p_events.add_argument("-n", "--lines", type=int, default=20)
    p_events.add_argument("-f", "--follow", action="store_true")

    p_stop = sub.add_parser("stop", help="Stop the daemon")
    p_stop.add_argument("--timeout", type=float, default=5.0)

    p_display = sub.add_parser("display", help="Turn the display on or off")
    p_display.add_argument("state", choices=["on", "off"])

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.cmd == "display":
        return cmd_display(config_path=args.config, state=args.state, json_mode=args.json)

    try:
        base_dir = _resolve_base_dir(args.base_dir, args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.cmd == "status":
        return cmd_status(base_dir=base_dir, json_mode=args.json)
    if args.cmd == "events":
        return cmd_events(base_dir=base_dir, lines=args.lines, follow=args.follow,
                          json_mode=args.json)
    if args.cmd == "stop":
        return cmd_stop(base_dir=base_dir, timeout_s=args.timeout, json_mode=args.json)
    return 2


if __name__ == "__main__":
    sys.exit(main())
