"""Polling watcher that turns git activity into checkout and commit events."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Protocol

from .git import GitClient, GitClientError

logger = logging.getLogger(__name__)


class BranchEventHandler(Protocol):
    @property
    def current_branch(self) -> str | None:
        ...

    def handle_checkout(self, branch_name: str) -> object:
        ...

    def handle_commit(self, message: str) -> object:
        ...


def _mtime(path: Path) -> float | None:
    try:
        return path.stat().st_mtime
    except OSError:
        return None


class GitWatcher:
    """Watch ``.git/HEAD`` for checkouts and ``.git/logs/HEAD`` for commits.

    A commit is reported only when ``HEAD`` moves without the branch changing,
    so a checkout onto a branch at another commit is not mistaken for one.
    """

    def __init__(self, client: GitClient, handler: BranchEventHandler, *, interval: float = 2.0) -> None:
        self._client = client
        self._handler = handler
        self._interval = interval
        self._head_mtime: float | None = None
        self._reflog_mtime: float | None = None
        self._last_commit: str | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def last_commit(self) -> str | None:
        return self._last_commit

    def prime(self) -> None:
        """Record the current state so only later changes produce events."""

        git_dir = self._client.git_dir
        self._head_mtime = _mtime(git_dir / "HEAD")
        self._reflog_mtime = _mtime(git_dir / "logs" / "HEAD")
        self._last_commit = self._head_commit()

    def poll(self) -> None:
        git_dir = self._client.git_dir
        head_mtime = _mtime(git_dir / "HEAD")
        reflog_mtime = _mtime(git_dir / "logs" / "HEAD")

        checked_out = False
        if head_mtime != self._head_mtime:
            self._head_mtime = head_mtime
            checked_out = self._check_branch()

        if reflog_mtime != self._reflog_mtime or checked_out:
            self._reflog_mtime = reflog_mtime
            self._check_commit(report=not checked_out)

    def _head_commit(self) -> str | None:
        try:
            return self._client.head_commit()
        except GitClientError as exc:
            logger.debug("Unable to read HEAD commit", extra={"error": str(exc)})
            return None

    def _check_branch(self) -> bool:
        try:
            branch = self._client.current_branch()
        except GitClientError as exc:
            logger.debug("Unable to read current branch", extra={"error": str(exc)})
            return False
        if not branch or branch == self._handler.current_branch:
            return False
        try:
            self._handler.handle_checkout(branch)
        except Exception:
            logger.exception("Branch checkout handling failed", extra={"branch": branch})
        return True

    def _check_commit(self, *, report: bool) -> None:
        commit = self._head_commit()
        if commit is None:
            return
        previous, self._last_commit = self._last_commit, commit
        if not report or previous is None or commit == previous:
            return
        try:
            message = self._client.last_commit_message()
            self._handler.handle_commit(message)
        except GitClientError as exc:
            logger.debug("Unable to read commit message", extra={"error": str(exc)})
        except Exception:
            logger.exception("Commit handling failed", extra={"commit": commit})

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self.prime()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="timekeeper-git-watcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.poll()
            except Exception:
                logger.exception("Git polling failed")


__all__ = ["BranchEventHandler", "GitWatcher"]
