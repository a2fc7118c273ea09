"""Elapsed-time snapshots and unexpected-shutdown drift correction."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from .elapsed import millis_between, subtimer_elapsed
from .models import SubTimer


@dataclass(frozen=True, slots=True)
class DriftPolicy:
    """Tunable constants for the crash-detection heuristic."""

    snapshot_interval_ms: int = 30_000
    tolerance_multiplier: int = 3
    noise_threshold_ms: int = 10
    resume_window_ms: int = 5 * 60 * 1000

    @property
    def tolerance_ms(self) -> int:
        return self.snapshot_interval_ms * self.tolerance_multiplier


@dataclass(frozen=True, slots=True)
class DriftCorrection:
    """Outcome of a drift check that concluded the process died uncleanly."""

    subtimer_id: str
    elapsed_before_ms: int
    previous_ms: int
    corrected_ms: int
    drift_ms: int
    gap_ms: int

    @property
    def changed(self) -> bool:
        return self.elapsed_before_ms != self.corrected_ms


def sync_persisted_elapsed(subtimer: SubTimer, elapsed_ms: int, policy: DriftPolicy) -> bool:
    """Refresh the persisted snapshot when it is missing or stale.

    Returns whether the snapshot changed. Differences up to the noise
    threshold are ignored.
    """

    sanitized = max(0, int(elapsed_ms))
    previous = subtimer.last_persisted_elapsed_time
    if previous is None or abs(previous - sanitized) > policy.noise_threshold_ms:
        subtimer.last_persisted_elapsed_time = sanitized
        return True
    return False


def correct_drift(subtimer: SubTimer, now: datetime, policy: DriftPolicy) -> DriftCorrection | None:
    """Clamp a session's elapsed time if it looks like an unclean shutdown.

    The check compares the computed elapsed time with the last persisted
    snapshot, and the wall-clock gap since the last pause/resume boundary,
    against ``policy.tolerance_ms``. When either exceeds it, the total and the
    snapshot are both set to the smaller of the two values so time is never
    inflated. Sessions without a snapshot are left alone.
    """

    persisted = subtimer.last_persisted_elapsed_time
    if persisted is None:
        return None

    running = subtimer.end_time is None
    boundary = subtimer.end_time or subtimer.last_resume_time or subtimer.start_time
    current = subtimer_elapsed(subtimer, now)
    gap = millis_between(boundary, now)
    drift = abs(current - persisted)

    if gap <= policy.tolerance_ms and drift <= policy.tolerance_ms:
        return None

    baseline = max(0, min(current, persisted))
    subtimer.total_elapsed_time = baseline
    subtimer.last_persisted_elapsed_time = baseline
    if running:
        # the clamped total already covers the segment in progress
        subtimer.last_resume_time = now

    return DriftCorrection(
        subtimer_id=subtimer.id,
        elapsed_before_ms=current,
        previous_ms=persisted,
        corrected_ms=baseline,
        drift_ms=drift,
        gap_ms=gap,
    )


__all__ = ["DriftCorrection", "DriftPolicy", "correct_drift", "sync_persisted_elapsed"]
