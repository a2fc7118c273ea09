"""Snapshots, unexpected-shutdown detection and shutdown auto-pause."""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol

from ..storage.models import AutoPauseMarker, SubTimerRef
from .drift import DriftCorrection, sync_persisted_elapsed
from .elapsed import millis_between, subtimer_elapsed
from .lifecycle import TimeTracker

logger = logging.getLogger(__name__)

AUTO_PAUSED_TIMERS_KEY = "time_tracker.auto_paused_timers"
AUTO_PAUSED_SUBTIMERS_KEY = "time_tracker.auto_paused_subtimers"
AUTO_PAUSED_AT_KEY = "time_tracker.auto_paused_at"


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class CrashRecovery:
    """Keeps elapsed-time snapshots fresh and reconciles state across restarts.

    Snapshots let the next start tell a clean pause from a process that died
    while a session was running. A clean shutdown pauses everything and leaves
    a marker in ``state``; the next start resumes those sessions when it
    happens within ``policy.resume_window_ms``.
    """

    def __init__(self, tracker: TimeTracker, state: KeyValueStore) -> None:
        self._tracker = tracker
        self._state = state

    def snapshot(self) -> int:
        """Refresh the snapshot of every running session; returns how many changed."""

        tracker = self._tracker
        with tracker.mutation() as now:
            changed = 0
            for timer in tracker.store.running_timers():
                for subtimer in timer.subtimers:
                    if subtimer.end_time is not None:
                        continue
                    if sync_persisted_elapsed(subtimer, subtimer_elapsed(subtimer, now), tracker.policy):
                        changed += 1
            if changed:
                tracker.note("snapshot", sessions=changed)
            return changed

    def detect_unexpected_shutdown(self) -> list[DriftCorrection]:
        """Clamp sessions left running by a process that died without pausing them."""

        tracker = self._tracker
        corrections: list[DriftCorrection] = []
        with tracker.mutation() as now:
            for timer in tracker.store.iter_timers():
                for subtimer in timer.subtimers:
                    if subtimer.end_time is not None:
                        continue
                    if subtimer.last_persisted_elapsed_time is None:
                        sync_persisted_elapsed(subtimer, subtimer_elapsed(subtimer, now), tracker.policy)
                        tracker.note("snapshot", timer, subtimer)
                        continue
                    correction = tracker.apply_drift(timer, subtimer, now)
                    if correction is not None:
                        corrections.append(correction)
        if corrections:
            logger.warning("Detected unexpected shutdown", extra={"sessions": len(corrections)})
        return corrections

    def pause_all_on_shutdown(self) -> AutoPauseMarker | None:
        """Pause every running session and remember them for the next start.

        Safe to call more than once: with nothing running the existing marker
        is left alone. Never raises.
        """

        try:
            with self._tracker.mutation() as now:
                paused = self._tracker.pause_all(now)
                if not paused:
                    return None
                marker = AutoPauseMarker(
                    paused_at=now,
                    timer_ids=list(dict.fromkeys(timer.id for timer, _ in paused)),
                    subtimer_refs=[SubTimerRef(timer.id, subtimer.id) for timer, subtimer in paused],
                )
                # an enclosing mutation interrupted by a signal never reaches its flush
                self._tracker.save()
                self._write_marker(marker)
        except Exception:
            logger.exception("Failed to pause timers on shutdown")
            return None
        logger.info("Paused running timers for shutdown", extra={"sessions": len(marker.subtimer_refs)})
        return marker

    def resume_auto_paused(self) -> list[SubTimerRef]:
        """Resume sessions paused by the last shutdown if it was recent enough.

        Only sessions whose end time still equals the marker instant are
        resumed; anything edited since is left paused. The marker is cleared
        whether or not it was used.
        """

        marker = self.read_marker()
        self._clear_marker()
        if marker is None:
            return []

        tracker = self._tracker
        resumed: list[SubTimerRef] = []
        with tracker.mutation() as now:
            age = millis_between(marker.paused_at, now)
            if age > tracker.policy.resume_window_ms:
                logger.info("Auto-pause marker expired", extra={"age_ms": age})
                return []
            for ref in marker.subtimer_refs:
                timer = tracker.store.find_timer(ref.timer_id)
                subtimer = tracker.store.find_subtimer(timer, ref.subtimer_id) if timer else None
                if subtimer is None or subtimer.end_time != marker.paused_at:
                    continue
                if tracker.resume_subtimer(timer, subtimer, now):
                    resumed.append(ref)
        if resumed:
            logger.info("Resumed auto-paused timers", extra={"sessions": len(resumed)})
        return resumed

    def read_marker(self) -> AutoPauseMarker | None:
        try:
            paused_at_raw = self._state.get(AUTO_PAUSED_AT_KEY)
            if not paused_at_raw:
                return None
            return AutoPauseMarker(
                paused_at=datetime.fromisoformat(paused_at_raw),
                timer_ids=list(self._state.get(AUTO_PAUSED_TIMERS_KEY) or []),
                subtimer_refs=[
                    SubTimerRef.from_dict(item) for item in self._state.get(AUTO_PAUSED_SUBTIMERS_KEY) or []
                ],
            )
        except Exception:
            logger.exception("Ignoring unreadable auto-pause marker")
            return None

    def _write_marker(self, marker: AutoPauseMarker) -> None:
        try:
            self._state.set(AUTO_PAUSED_TIMERS_KEY, marker.timer_ids)
            self._state.set(AUTO_PAUSED_SUBTIMERS_KEY, [ref.to_dict() for ref in marker.subtimer_refs])
            self._state.set(AUTO_PAUSED_AT_KEY, marker.paused_at.isoformat())
        except Exception:
            logger.exception("Failed to write auto-pause marker")

    def _clear_marker(self) -> None:
        for key in (AUTO_PAUSED_TIMERS_KEY, AUTO_PAUSED_SUBTIMERS_KEY, AUTO_PAUSED_AT_KEY):
            try:
                self._state.delete(key)
            except Exception:
                logger.exception("Failed to clear auto-pause marker", extra={"key": key})


class SnapshotScheduler:
    """Daemon thread that calls :meth:`CrashRecovery.snapshot` on an interval."""

    def __init__(self, recovery: CrashRecovery, interval: float) -> None:
        self._recovery = recovery
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="timekeeper-snapshot", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> None:
        try:
            self._recovery.snapshot()
        except Exception:
            logger.exception("Periodic snapshot failed")

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.run_once()


def install_shutdown_hooks(
    recovery: CrashRecovery,
    *,
    before_pause: Iterable[Callable[[], None]] = (),
    register: Callable[[Callable[[], None]], Any] = atexit.register,
    signals: Iterable[signal.Signals] = (signal.SIGTERM,),
) -> Callable[[], None]:
    """Pause running timers when the process exits or receives a termination signal.

    Returns the shutdown callable; it runs at most once.
    """

    done = threading.Event()
    callbacks = list(before_pause)

    def shutdown() -> None:
        if done.is_set():
            return
        done.set()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Shutdown callback failed")
        recovery.pause_all_on_shutdown()

    register(shutdown)
    for signum in signals:
        previous = signal.getsignal(signum)

        def handler(received: int, frame: Any, previous: Any = previous) -> None:
            shutdown()
            if callable(previous):
                previous(received, frame)
            else:
                raise SystemExit(128 + received)

        try:
            signal.signal(signum, handler)
        except ValueError:
            logger.warning("Cannot install signal handler outside the main thread", extra={"signal": int(signum)})
    return shutdown


__all__ = [
    "AUTO_PAUSED_AT_KEY",
    "AUTO_PAUSED_SUBTIMERS_KEY",
    "AUTO_PAUSED_TIMERS_KEY",
    "CrashRecovery",
    "KeyValueStore",
    "SnapshotScheduler",
    "install_shutdown_hooks",
]
