"""Timer and session lifecycle controller."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping, Protocol, Sequence

from .drift import DriftCorrection, DriftPolicy, correct_drift, sync_persisted_elapsed
from .elapsed import format_elapsed, millis_between, subtimer_elapsed
from .models import SubTimer, Timer, TimerFolder, TimeTrackerConfig
from .store import SubTimerNotFoundError, TimerStore

logger = logging.getLogger(__name__)

DEFAULT_SESSION_LABEL = "Session 1:"
DEFAULT_LOG_LIMIT = 1000
_TIMER_DERIVED_FIELDS = frozenset({"end_time", "endTime"})


class Persistence(Protocol):
    """Whole-aggregate persistence used after every mutation."""

    def load(self) -> TimeTrackerConfig:
        ...

    def save(self, config: TimeTrackerConfig) -> None:
        ...


@dataclass(frozen=True, slots=True)
class ConfigChange:
    """Notification fired after a mutation has been persisted."""

    reason: str
    timer_id: str | None = None
    subtimer_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)


ChangeListener = Callable[[ConfigChange], None]


class TimeTracker:
    """Owns the timer aggregate and serializes every mutation of it.

    Each public operation takes the re-entrant ``lock``, samples the clock
    once, mutates the in-memory tree and, if anything changed, saves the whole
    aggregate before notifying listeners. Operations that find nothing to do
    do not save.

    Collaborators that need several primitives in one unit of work
    (crash recovery, branch automation) use :meth:`mutation` and the
    lock-held primitives below it.
    """

    def __init__(
        self,
        persistence: Persistence,
        *,
        clock: Callable[[], datetime] | None = None,
        policy: DriftPolicy | None = None,
        log_limit: int = DEFAULT_LOG_LIMIT,
        config: TimeTrackerConfig | None = None,
    ) -> None:
        self._persistence = persistence
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._policy = policy or DriftPolicy()
        self._log_limit = log_limit
        self._store = TimerStore(config if config is not None else persistence.load())
        self._lock = threading.RLock()
        self._listeners: list[ChangeListener] = []
        self._pending: list[ConfigChange] = []
        self._depth = 0
        self._now: datetime | None = None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def policy(self) -> DriftPolicy:
        return self._policy

    @property
    def store(self) -> TimerStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Notifications and persistence

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Subscribe to change notifications; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def mutation(self) -> Iterator[datetime]:
        """Hold the lock for one unit of work and yield its ``now`` sample.

        Nested use shares the outer ``now`` and only the outermost exit
        persists. Persistence errors propagate; the pending changes are kept
        so :meth:`save` can retry.
        """

        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._now = self._clock()
            self._depth += 1
            try:
                yield self._now
            finally:
                self._depth -= 1
            if outermost and self._pending:
                self._flush()

    def save(self) -> None:
        """Persist the current aggregate unconditionally."""

        with self._lock:
            self._flush()

    def _flush(self) -> None:
        self._persistence.save(self._store.config)
        changes, self._pending = self._pending, []
        for change in changes:
            for listener in list(self._listeners):
                try:
                    listener(change)
                except Exception:
                    logger.exception("Change listener failed", extra={"reason": change.reason})

    # ------------------------------------------------------------------
    # Lock-held primitives

    def note(
        self,
        reason: str,
        timer: Timer | None = None,
        subtimer: SubTimer | None = None,
        **detail: Any,
    ) -> None:
        """Record a change to persist and broadcast when the unit of work ends."""

        self._pending.append(
            ConfigChange(
                reason=reason,
                timer_id=timer.id if timer else None,
                subtimer_id=subtimer.id if subtimer else None,
                detail=detail,
            )
        )

    def add_log(self, timer: Timer, message: str, now: datetime) -> None:
        stamp = now.astimezone().strftime("%H:%M:%S")
        timer.logs.append(f"{stamp} - {message}")
        if len(timer.logs) > self._log_limit:
            del timer.logs[: len(timer.logs) - self._log_limit]

    def pause_subtimer(self, timer: Timer, subtimer: SubTimer, now: datetime, *, reason: str = "Paused") -> bool:
        """Fold the running segment into the total and stop the session."""

        if subtimer.end_time is not None:
            return False
        resumed_at = subtimer.last_resume_time or subtimer.start_time
        segment = max(0, millis_between(resumed_at, now))
        subtimer.total_elapsed_time = (subtimer.total_elapsed_time or 0) + segment
        subtimer.end_time = now
        sync_persisted_elapsed(subtimer, subtimer.total_elapsed_time, self._policy)
        self.add_log(timer, f"[{subtimer.label}] - {reason}", now)
        self.note("subtimer_paused", timer, subtimer, elapsed_ms=subtimer.total_elapsed_time)
        return True

    def pause_timer(self, timer: Timer, now: datetime, *, reason: str = "Paused") -> list[SubTimer]:
        return [
            subtimer
            for subtimer in timer.subtimers
            if self.pause_subtimer(timer, subtimer, now, reason=reason)
        ]

    def pause_all(
        self,
        now: datetime,
        *,
        exclude_timer_id: str | None = None,
        predicate: Callable[[Timer], bool] | None = None,
        reason: str = "Paused",
    ) -> list[tuple[Timer, SubTimer]]:
        paused: list[tuple[Timer, SubTimer]] = []
        for timer in self._store.iter_timers():
            if exclude_timer_id is not None and timer.id == exclude_timer_id:
                continue
            if predicate is not None and not predicate(timer):
                continue
            paused.extend((timer, subtimer) for subtimer in self.pause_timer(timer, now, reason=reason))
        return paused

    def apply_drift(self, timer: Timer, subtimer: SubTimer, now: datetime) -> DriftCorrection | None:
        correction = correct_drift(subtimer, now, self._policy)
        if correction is None:
            return None
        if not correction.changed:
            if subtimer.end_time is None:
                self.note("drift_checked", timer, subtimer)
            return correction
        self.add_log(
            timer,
            f"[{subtimer.label}] - Closed unexpectedly. Restored elapsed time from "
            f"{format_elapsed(correction.elapsed_before_ms)} to {format_elapsed(correction.corrected_ms)}.",
            now,
        )
        logger.warning(
            "Corrected elapsed time after unexpected shutdown",
            extra={
                "timer_id": timer.id,
                "subtimer_id": subtimer.id,
                "previous_ms": correction.elapsed_before_ms,
                "corrected_ms": correction.corrected_ms,
            },
        )
        self.note(
            "drift_corrected",
            timer,
            subtimer,
            elapsed_before_ms=correction.elapsed_before_ms,
            persisted_ms=correction.previous_ms,
            corrected_ms=correction.corrected_ms,
            drift_ms=correction.drift_ms,
            gap_ms=correction.gap_ms,
        )
        return correction

    def resume_subtimer(self, timer: Timer, subtimer: SubTimer, now: datetime, *, reason: str = "Resumed") -> bool:
        """Start a new running segment on a paused session."""

        if subtimer.end_time is None:
            return False
        if subtimer.total_elapsed_time is None:
            # legacy sessions only stored start and end
            subtimer.total_elapsed_time = max(0, millis_between(subtimer.start_time, subtimer.end_time))
        self.apply_drift(timer, subtimer, now)
        subtimer.end_time = None
        subtimer.last_resume_time = now
        sync_persisted_elapsed(subtimer, subtimer.total_elapsed_time or 0, self._policy)
        self.add_log(timer, f"[{subtimer.label}] - {reason}", now)
        self.note("subtimer_resumed", timer, subtimer)
        return True

    def new_subtimer(
        self,
        timer: Timer,
        label: str,
        now: datetime,
        *,
        description: str | None = None,
        start_immediately: bool = True,
    ) -> SubTimer:
        if start_immediately:
            self.pause_timer(timer, now)
        subtimer = SubTimer(
            label=label or "Untitled Session",
            description=description,
            start_time=now,
            end_time=None if start_immediately else now,
            total_elapsed_time=0,
            last_resume_time=now if start_immediately else None,
            last_persisted_elapsed_time=0,
        )
        timer.subtimers.append(subtimer)
        action = "Started" if start_immediately else "Created"
        self.add_log(timer, f"[{subtimer.label}] - {action}", now)
        self.note("subtimer_created", timer, subtimer, running=start_immediately)
        return subtimer

    def new_timer(
        self,
        label: str,
        now: datetime,
        *,
        folder_path: Sequence[int] | None = None,
        branch_name: str | None = None,
    ) -> Timer:
        timer = Timer(label=label or "Untitled Timer", start_time=now, branch_name=branch_name)
        self._store.add_timer(timer, folder_path)
        self.note("timer_created", timer, branch_name=branch_name)
        return timer

    # ------------------------------------------------------------------
    # Queries

    @property
    def config(self) -> TimeTrackerConfig:
        with self._lock:
            return self._store.config.model_copy(deep=True)

    def is_enabled(self) -> bool:
        return self._store.config.enabled

    def get_timer(self, timer_id: str) -> Timer | None:
        with self._lock:
            timer = self._store.find_timer(timer_id)
            return timer.model_copy(deep=True) if timer else None

    def all_timers(self, include_archived: bool = False) -> list[Timer]:
        with self._lock:
            return [timer.model_copy(deep=True) for timer in self._store.all_timers(include_archived)]

    def running_timers(self) -> list[Timer]:
        with self._lock:
            return [timer.model_copy(deep=True) for timer in self._store.running_timers()]

    # ------------------------------------------------------------------
    # Timer operations

    def start_timer(self, label: str, folder_path: Sequence[int] | None = None) -> Timer:
        """Create a timer with a running first session, pausing everything else."""

        with self.mutation() as now:
            self.pause_all(now)
            timer = self.new_timer(label, now, folder_path=folder_path)
            self.add_log(timer, "Timer created", now)
            self.add_log(timer, "Started", now)
            self.new_subtimer(timer, DEFAULT_SESSION_LABEL, now)
            logger.info("Started timer", extra={"timer_id": timer.id, "label": timer.label})
            return timer.model_copy(deep=True)

    def stop_timer(self, timer_id: str) -> None:
        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            if timer is not None:
                self.pause_timer(timer, now)

    def stop_all_timers(self, exclude_timer_id: str | None = None) -> None:
        with self.mutation() as now:
            self.pause_all(now, exclude_timer_id=exclude_timer_id)

    def resume_timer(self, timer_id: str) -> None:
        """Pause every timer, then resume this timer's last session."""

        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            if timer is None or not timer.subtimers:
                return
            self.pause_all(now)
            self.resume_subtimer(timer, timer.subtimers[-1], now)

    def archive_timer(self, timer_id: str, archived: bool) -> None:
        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            if timer is None:
                return
            if archived:
                self.pause_timer(timer, now)
            if timer.archived != archived:
                timer.archived = archived
                self.add_log(timer, "Archived" if archived else "Unarchived", now)
                self.note("timer_archived", timer, archived=archived)

    def delete_timer(self, timer_id: str) -> None:
        with self.mutation():
            timer = self._store.remove_timer(timer_id)
            if timer is not None:
                self.note("timer_deleted", timer)
                logger.info("Deleted timer", extra={"timer_id": timer_id})

    def edit_timer(self, timer_id: str, updates: Mapping[str, Any]) -> None:
        """Shallow-merge ``updates`` into a timer.

        ``end_time`` (or ``endTime``) is dropped: a timer's activity is
        derived from its sessions and never stored on the timer itself.
        """

        changes = {key: value for key, value in updates.items() if key not in _TIMER_DERIVED_FIELDS}
        _reject_unknown_fields(Timer, changes)
        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            if timer is None or not changes:
                return
            old_label = timer.label
            for key, value in changes.items():
                setattr(timer, key, value)
            if timer.label != old_label:
                self.add_log(timer, f'Renamed from "{old_label}" to "{timer.label}"', now)
            self.note("timer_edited", timer, fields=sorted(changes))

    def update_timer_dates(self, timer_id: str, start_time: datetime | None = None) -> None:
        with self.mutation():
            timer = self._store.require_timer(timer_id)
            if start_time is not None:
                timer.start_time = start_time
            self.note("timer_edited", timer, fields=["start_time"])

    def create_folder(self, name: str, parent_path: Sequence[int] | None = None) -> TimerFolder:
        with self.mutation():
            folder = self._store.create_folder(name, parent_path)
            self.note("folder_created", name=name)
            return folder.model_copy(deep=True)

    def move_timer_by_offset(self, timer_id: str, offset: int) -> None:
        with self.mutation():
            if self._store.move_timer_by_offset(timer_id, offset):
                self.note("timer_moved", self._store.find_timer(timer_id), offset=offset)

    def move_timer_to_folder(self, timer_id: str, folder_path: Sequence[int] | None = None) -> None:
        with self.mutation():
            if self._store.move_timer_to_folder(timer_id, folder_path):
                self.note(
                    "timer_moved",
                    self._store.find_timer(timer_id),
                    folder_path=list(folder_path) if folder_path else None,
                )

    # ------------------------------------------------------------------
    # Session operations

    def create_subtimer(
        self,
        timer_id: str,
        label: str,
        description: str | None = None,
        start_immediately: bool = True,
    ) -> SubTimer:
        """Append a session to a timer; raises when the timer does not exist.

        Starting immediately pauses the other sessions of this timer only.
        """

        with self.mutation() as now:
            timer = self._store.require_timer(timer_id)
            subtimer = self.new_subtimer(
                timer,
                label,
                now,
                description=description,
                start_immediately=start_immediately,
            )
            return subtimer.model_copy(deep=True)

    def start_subtimer(self, timer_id: str, subtimer_id: str) -> None:
        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            if timer is None:
                return
            subtimer = self._store.find_subtimer(timer, subtimer_id)
            if subtimer is None or subtimer.end_time is None:
                return
            for sibling in timer.subtimers:
                if sibling is not subtimer:
                    self.pause_subtimer(timer, sibling, now)
            self.resume_subtimer(timer, subtimer, now)

    def stop_subtimer(self, timer_id: str, subtimer_id: str) -> None:
        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            if timer is None:
                return
            subtimer = self._store.find_subtimer(timer, subtimer_id)
            if subtimer is not None:
                self.pause_subtimer(timer, subtimer, now)

    def edit_subtimer(self, timer_id: str, subtimer_id: str, updates: Mapping[str, Any]) -> None:
        changes = dict(updates)
        _reject_unknown_fields(SubTimer, changes)
        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            subtimer = self._store.find_subtimer(timer, subtimer_id) if timer else None
            if subtimer is None or not changes:
                return
            old_label = subtimer.label
            for key, value in changes.items():
                setattr(subtimer, key, value)
            if "label" in changes and subtimer.label != old_label:
                self.add_log(timer, f"[{old_label}] - Renamed to [{subtimer.label}]", now)
            else:
                self.add_log(timer, f"[{subtimer.label}] - Edited", now)
            self.note("subtimer_edited", timer, subtimer, fields=sorted(changes))

    def update_subtimer_dates(
        self,
        timer_id: str,
        subtimer_id: str,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
    ) -> None:
        with self.mutation() as now:
            timer = self._store.require_timer(timer_id)
            subtimer = self._store.find_subtimer(timer, subtimer_id)
            if subtimer is None:
                raise SubTimerNotFoundError(f"Session '{subtimer_id}' not found on timer '{timer_id}'")
            if start_time is not None:
                subtimer.start_time = start_time
            if end_time is not None:
                subtimer.end_time = end_time
            sync_persisted_elapsed(subtimer, subtimer_elapsed(subtimer, now), self._policy)
            self.note("subtimer_edited", timer, subtimer, fields=["start_time", "end_time"])

    def reorder_subtimers(self, timer_id: str, subtimer_ids: Sequence[str]) -> None:
        with self.mutation():
            timer = self._store.require_timer(timer_id)
            if len(subtimer_ids) != len(timer.subtimers):
                raise ValueError("Session count mismatch")
            by_id = {subtimer.id: subtimer for subtimer in timer.subtimers}
            reordered: list[SubTimer] = []
            for subtimer_id in subtimer_ids:
                if subtimer_id not in by_id:
                    raise SubTimerNotFoundError(f"Session '{subtimer_id}' not found on timer '{timer_id}'")
                reordered.append(by_id[subtimer_id])
            timer.subtimers = reordered
            self.note("subtimers_reordered", timer)

    def delete_subtimer(self, timer_id: str, subtimer_id: str) -> None:
        """Remove a session, keeping at least one (stopped) session on the timer."""

        with self.mutation() as now:
            timer = self._store.find_timer(timer_id)
            if timer is None:
                return
            subtimer = self._store.find_subtimer(timer, subtimer_id)
            if subtimer is None:
                return
            timer.subtimers = [item for item in timer.subtimers if item is not subtimer]
            suffix = f" {subtimer.description}" if subtimer.description else ""
            self.add_log(timer, f"[{subtimer.label}] - Deleted{suffix}", now)
            self.note("subtimer_deleted", timer, subtimer)
            if not timer.subtimers:
                timer.subtimers.append(
                    SubTimer(
                        label=DEFAULT_SESSION_LABEL,
                        start_time=now,
                        end_time=now,
                        total_elapsed_time=0,
                        last_persisted_elapsed_time=0,
                    )
                )

    # ------------------------------------------------------------------
    # Settings

    def set_enabled(self, enabled: bool) -> None:
        """Toggle tracking; disabling pauses every running session."""

        with self.mutation() as now:
            config = self._store.config
            if config.enabled == enabled:
                return
            config.enabled = enabled
            if not enabled:
                self.pause_all(now)
            self.note("tracking_toggled", enabled=enabled)

    def set_auto_create_on_branch_checkout(self, enabled: bool) -> None:
        with self.mutation():
            config = self._store.config
            if config.auto_create_on_branch_checkout != enabled:
                config.auto_create_on_branch_checkout = enabled
                self.note("settings_changed", auto_create_on_branch_checkout=enabled)

    def set_ignored_branches(self, branches: Sequence[str]) -> None:
        normalized = list(dict.fromkeys(branch.strip() for branch in branches if branch.strip()))
        with self.mutation():
            config = self._store.config
            if config.ignored_branches != normalized:
                config.ignored_branches = normalized
                self.note("settings_changed", ignored_branches=normalized)


def _reject_unknown_fields(model: type[Timer] | type[SubTimer], updates: Mapping[str, Any]) -> None:
    unknown = sorted(set(updates) - set(model.model_fields))
    if unknown:
        raise ValueError(f"Unknown {model.__name__} fields: {', '.join(unknown)}")


__all__ = [
    "ChangeListener",
    "ConfigChange",
    "DEFAULT_SESSION_LABEL",
    "Persistence",
    "TimeTracker",
]
