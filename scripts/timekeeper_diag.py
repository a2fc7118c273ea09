"""Timekeeper MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from datetime import datetime, timezone

from timekeeper_mcp.config import TimekeeperSettings
from timekeeper_mcp.storage import (
    ChromaStore,
    ChromaUnavailableError,
    ConfigLoadError,
    ConfigStore,
    StateStore,
)
from timekeeper_mcp.tracking import (
    TimeTrackerConfig,
    TimerStore,
    format_elapsed,
    is_timer_running,
    timer_elapsed,
)
from timekeeper_mcp.tracking.recovery import (
    AUTO_PAUSED_AT_KEY,
    AUTO_PAUSED_SUBTIMERS_KEY,
    AUTO_PAUSED_TIMERS_KEY,
)
from timekeeper_mcp.tools import subtimer_payload


def load_config(settings: TimekeeperSettings) -> TimeTrackerConfig:
    try:
        return ConfigStore(settings.config_path).load(strict=True)
    except ConfigLoadError as exc:
        print(f"Timer configuration unreadable: {exc}")
        raise SystemExit(1)


def load_store(settings: TimekeeperSettings) -> ChromaStore:
    return ChromaStore(settings.chroma_persist_path)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def cmd_timers(args: argparse.Namespace) -> None:
    settings = TimekeeperSettings()
    store = TimerStore(load_config(settings))
    now = _now()
    timers = store.all_timers(include_archived=args.archived)
    if args.json:
        print(
            json.dumps(
                [
                    {
                        "id": timer.id,
                        "label": timer.label,
                        "branch_name": timer.branch_name,
                        "archived": timer.archived,
                        "running": is_timer_running(timer),
                        "elapsed_ms": timer_elapsed(timer, now),
                        "sessions": len(timer.subtimers),
                    }
                    for timer in timers
                ],
                indent=2,
            )
        )
    else:
        for timer in timers:
            state = "running" if is_timer_running(timer) else "paused"
            print(f"{timer.id} [{state}] {timer.label} -> {format_elapsed(timer_elapsed(timer, now))}")


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = TimekeeperSettings()
    store = TimerStore(load_config(settings))
    timer = store.find_timer(args.timer_id)
    if timer is None:
        print(f"Timer '{args.timer_id}' not found")
        raise SystemExit(1)
    now = _now()
    print(json.dumps([subtimer_payload(subtimer, now) for subtimer in timer.subtimers], indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = TimekeeperSettings()
    config = load_config(settings)
    store = TimerStore(config)
    now = _now()
    timers = store.all_timers(include_archived=True)

    try:
        corrections: int | None = len(load_store(settings).fetch_drift_corrections())
    except ChromaUnavailableError:
        corrections = None

    metrics = {
        "enabled": config.enabled,
        "timers_total": len(timers),
        "timers_running": sum(1 for timer in timers if is_timer_running(timer)),
        "timers_archived": sum(1 for timer in timers if timer.archived),
        "branch_timers": sum(1 for timer in timers if timer.branch_name),
        "sessions_total": sum(len(timer.subtimers) for timer in timers),
        "tracked_ms": sum(timer_elapsed(timer, now) for timer in timers),
        "folders_total": len([folder for folder in config.folders if folder.name]),
        "drift_corrections": corrections,
    }
    print(json.dumps(metrics, indent=2))


def cmd_corrections(args: argparse.Namespace) -> None:
    settings = TimekeeperSettings()
    try:
        corrections = load_store(settings).fetch_drift_corrections(timer_id=args.timer_id, limit=args.limit)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    print(json.dumps([correction.to_dict() for correction in corrections], indent=2))


def cmd_marker(args: argparse.Namespace) -> None:
    settings = TimekeeperSettings()
    state = StateStore(settings.state_path)
    paused_at = state.get(AUTO_PAUSED_AT_KEY)
    payload = {
        "present": paused_at is not None,
        "paused_at": paused_at,
        "timers": state.get(AUTO_PAUSED_TIMERS_KEY) or [],
        "sessions": state.get(AUTO_PAUSED_SUBTIMERS_KEY) or [],
    }
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Timekeeper MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_timers = sub.add_parser("timers", help="List timers with their elapsed time")
    p_timers.add_argument("--json", action="store_true", help="Output JSON")
    p_timers.add_argument("--archived", action="store_true", help="Include archived timers")
    p_timers.set_defaults(func=cmd_timers)

    p_sessions = sub.add_parser("sessions", help="List the sessions of a timer")
    p_sessions.add_argument("--timer-id", required=True)
    p_sessions.set_defaults(func=cmd_sessions)

    p_metrics = sub.add_parser("metrics", help="Show timer/session counts and tracked time")
    p_metrics.set_defaults(func=cmd_metrics)

    p_corrections = sub.add_parser(
        "corrections",
        help="List drift corrections applied after unexpected shutdowns",
    )
    p_corrections.add_argument("--timer-id")
    p_corrections.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N corrections",
    )
    p_corrections.set_defaults(func=cmd_corrections)

    p_marker = sub.add_parser("marker", help="Show the shutdown auto-pause marker")
    p_marker.set_defaults(func=cmd_marker)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
