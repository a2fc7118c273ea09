"""Automatic branch timers driven by checkout and commit events."""

from __future__ import annotations

import logging
import re

from .elapsed import is_timer_running
from .lifecycle import DEFAULT_SESSION_LABEL, TimeTracker
from .models import SubTimer, Timer

logger = logging.getLogger(__name__)

BRANCH_LABEL_PREFIX = "Branch: "
_SESSION_NUMBER = re.compile(r"Session (\d+)")


class BranchAutomation:
    """Keeps one timer per branch and one session per stretch of work on it.

    Checking out a branch pauses the other branch timers (manually started
    timers keep running) and starts a new session on the branch's timer,
    creating the timer on first checkout. A commit closes the running session,
    renames it after the commit and opens the next one.
    """

    def __init__(self, tracker: TimeTracker) -> None:
        self._tracker = tracker
        self._current_branch: str | None = None

    @property
    def current_branch(self) -> str | None:
        return self._current_branch

    def _tracks(self, branch_name: str) -> bool:
        config = self._tracker.store.config
        return (
            config.enabled
            and config.auto_create_on_branch_checkout
            and branch_name not in config.ignored_branches
        )

    def handle_checkout(self, branch_name: str) -> Timer | None:
        """Switch tracking to ``branch_name``; returns the branch timer when it changed."""

        branch_name = branch_name.strip()
        tracker = self._tracker
        store = tracker.store
        with tracker.mutation() as now:
            if not branch_name or not self._tracks(branch_name) or branch_name == self._current_branch:
                return None

            previous = self._current_branch
            previous_timer = store.find_branch_timer(previous) if previous else None
            tracker.pause_all(
                now,
                predicate=lambda timer: bool(timer.branch_name) and timer.branch_name != branch_name,
            )

            switched = f'Branch switched from "{previous}" to "{branch_name}"'
            timer = store.find_branch_timer(branch_name)
            if timer is None:
                timer = tracker.new_timer(f"{BRANCH_LABEL_PREFIX}{branch_name}", now, branch_name=branch_name)
                tracker.add_log(timer, f'Branch timer created for "{branch_name}"', now)
                tracker.add_log(timer, f'Branch checked out: "{branch_name}"', now)
                if previous_timer is not None:
                    tracker.add_log(previous_timer, switched, now)
                session_label = DEFAULT_SESSION_LABEL
            else:
                if previous is None:
                    tracker.add_log(timer, f'Branch checked out: "{branch_name}"', now)
                else:
                    if previous_timer is not None:
                        tracker.add_log(previous_timer, switched, now)
                    tracker.add_log(timer, switched, now)
                session_label = f"Session {len(timer.subtimers) + 1}:"

            tracker.new_subtimer(timer, session_label, now)
            self._current_branch = branch_name
            tracker.note("branch_checkout", timer, branch=branch_name, previous=previous)
            logger.info("Branch checked out", extra={"branch": branch_name, "previous": previous})
            return timer.model_copy(deep=True)

    def handle_commit(self, message: str) -> SubTimer | None:
        """Close the running session of the current branch under the commit's name.

        Returns the session opened after the commit, or ``None`` when nothing
        was running on a tracked branch.
        """

        tracker = self._tracker
        with tracker.mutation() as now:
            if not tracker.store.config.enabled or self._current_branch is None:
                return None
            timer = tracker.store.find_branch_timer(self._current_branch)
            if timer is None:
                return None
            active = next((subtimer for subtimer in timer.subtimers if subtimer.end_time is None), None)
            if active is None:
                return None

            match = _SESSION_NUMBER.search(active.label)
            number = match.group(1) if match else str(len(timer.subtimers))
            first_line = message.split("\n", 1)[0].strip()

            tracker.add_log(timer, f'Commit: "{first_line}"', now)
            active.label = f"Session {number} - Commit: {first_line}"
            tracker.pause_subtimer(timer, active, now)
            tracker.note("commit_recorded", timer, active, message=first_line)
            next_session = tracker.new_subtimer(timer, f"Session {len(timer.subtimers) + 1}:", now)
            return next_session.model_copy(deep=True)

    def reconcile_startup(self, branch_name: str | None) -> Timer | None:
        """Adopt the branch checked out when the process starts."""

        if not branch_name:
            return None
        tracker = self._tracker
        with tracker.mutation() as now:
            if not self._tracks(branch_name):
                self._current_branch = branch_name
                return None
            timer = tracker.store.find_branch_timer(branch_name)
            if timer is None:
                return self.handle_checkout(branch_name)

            self._current_branch = branch_name
            tracker.add_log(timer, "Opened and started", now)
            tracker.note("branch_reconciled", timer, branch=branch_name)
            if timer.subtimers and not is_timer_running(timer):
                tracker.resume_subtimer(timer, timer.subtimers[-1], now)
            return timer.model_copy(deep=True)


__all__ = ["BRANCH_LABEL_PREFIX", "BranchAutomation"]
