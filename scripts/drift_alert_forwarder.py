"""Forward persisted drift corrections to monitoring-friendly output."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from timekeeper_mcp.config import TimekeeperSettings
from timekeeper_mcp.storage import ChromaStore, ChromaUnavailableError
from timekeeper_mcp.tracking import format_elapsed


def load_store(settings: TimekeeperSettings) -> ChromaStore:
    """Construct a ChromaStore using the provided settings."""

    return ChromaStore(settings.chroma_persist_path)


def _default_event_formatter(item: dict[str, object]) -> str:
    return " | ".join(
        [
            f"timer={item['timer_id']}",
            f"session={item['subtimer_id']}",
            f"before={format_elapsed(int(item['elapsed_before_ms']))}",
            f"after={format_elapsed(int(item['corrected_ms']))}",
            f"timestamp={item['timestamp']}",
        ]
    )


def forward_alerts(args: argparse.Namespace, *, formatter=_default_event_formatter) -> int:
    settings = TimekeeperSettings()
    try:
        corrections = load_store(settings).fetch_drift_corrections(
            timer_id=args.timer_id, min_loss_ms=args.min_loss_ms, limit=args.limit
        )
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}", file=sys.stderr)
        return 1

    payload = [correction.to_dict() for correction in corrections]
    if args.format == "json":
        output_text = json.dumps(payload, indent=2)
    else:
        output_text = "\n".join(formatter(item) for item in payload)

    if args.output:
        Path(args.output).write_text(output_text, encoding="utf-8")
    else:
        print(output_text)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Forward drift correction events to stdout or a file for monitoring integrations."
    )
    parser.add_argument("--timer-id", help="Filter corrections by timer id", default=None)
    parser.add_argument(
        "--min-loss-ms",
        type=int,
        default=0,
        help="Only forward corrections that discarded at least this many milliseconds",
    )
    parser.add_argument(
        "--format",
        choices={"json", "text"},
        default="json",
        help="Output format (default: json)",
    )
    parser.add_argument("--output", help="Optional path to write the payload to")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, emit only the latest N corrections after filtering",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    exit_code = forward_alerts(args)
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
