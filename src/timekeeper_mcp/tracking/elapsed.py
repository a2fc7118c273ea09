"""Pure elapsed-time arithmetic for sessions and timers."""

from __future__ import annotations

from datetime import datetime, timedelta

from .models import SubTimer, Timer

_ONE_MS = timedelta(milliseconds=1)


def millis_between(start: datetime, end: datetime) -> int:
    """Return ``end - start`` in whole milliseconds (may be negative)."""

    return (end - start) // _ONE_MS


def is_subtimer_running(subtimer: SubTimer) -> bool:
    return subtimer.end_time is None


def is_timer_running(timer: Timer) -> bool:
    """A timer is running iff at least one of its sessions is running."""

    return any(is_subtimer_running(subtimer) for subtimer in timer.subtimers)


def subtimer_elapsed(subtimer: SubTimer, now: datetime) -> int:
    """Return the elapsed milliseconds of a session at ``now``.

    Paused sessions report exactly their accumulated total. Running sessions
    add the current segment; a non-positive segment (clock skew) adds nothing.
    """

    base = subtimer.total_elapsed_time or 0
    if subtimer.end_time is not None:
        return base

    resumed_at = subtimer.last_resume_time or subtimer.start_time
    delta = millis_between(resumed_at, now)
    if delta > 0:
        return base + delta
    return base


def timer_elapsed(timer: Timer, now: datetime) -> int:
    return sum(subtimer_elapsed(subtimer, now) for subtimer in timer.subtimers)


def format_elapsed(ms: int) -> str:
    """Format milliseconds as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""

    total_seconds = max(0, int(ms) // 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


__all__ = [
    "format_elapsed",
    "is_subtimer_running",
    "is_timer_running",
    "millis_between",
    "subtimer_elapsed",
    "timer_elapsed",
]
