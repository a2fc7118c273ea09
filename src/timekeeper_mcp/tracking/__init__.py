"""Time tracking engine: timers, sessions, crash recovery and branch automation."""

from .models import SubTimer, Timer, TimerFolder, TimeTrackerConfig
from .elapsed import (
    format_elapsed,
    is_subtimer_running,
    is_timer_running,
    millis_between,
    subtimer_elapsed,
    timer_elapsed,
)
from .store import SubTimerNotFoundError, TimerNotFoundError, TimerStore
from .drift import DriftCorrection, DriftPolicy, correct_drift, sync_persisted_elapsed
from .lifecycle import ConfigChange, Persistence, TimeTracker
from .recovery import CrashRecovery, SnapshotScheduler, install_shutdown_hooks
from .branches import BranchAutomation

__all__ = [
    "BranchAutomation",
    "ConfigChange",
    "CrashRecovery",
    "DriftCorrection",
    "DriftPolicy",
    "Persistence",
    "SnapshotScheduler",
    "SubTimer",
    "SubTimerNotFoundError",
    "TimeTracker",
    "TimeTrackerConfig",
    "Timer",
    "TimerFolder",
    "TimerNotFoundError",
    "TimerStore",
    "correct_drift",
    "format_elapsed",
    "install_shutdown_hooks",
    "is_subtimer_running",
    "is_timer_running",
    "millis_between",
    "subtimer_elapsed",
    "sync_persisted_elapsed",
    "timer_elapsed",
]
