"""Structural operations over the timer folder tree."""

from __future__ import annotations

from typing import Callable, Iterator, Sequence

from .elapsed import is_timer_running
from .models import SubTimer, Timer, TimerFolder, TimeTrackerConfig


class TimerNotFoundError(LookupError):
    """Raised when a timer id does not exist in the tree."""


class SubTimerNotFoundError(LookupError):
    """Raised when a session id does not exist on its timer."""


class TimerStore:
    """In-memory view over a :class:`TimeTrackerConfig` folder tree.

    The store only moves records around; it never applies accounting policy
    and never persists. Traversal is pre-order: each folder's timers, then its
    subfolders, in list order.
    """

    def __init__(self, config: TimeTrackerConfig) -> None:
        self._config = config

    @property
    def config(self) -> TimeTrackerConfig:
        return self._config

    def iter_folder_timers(self) -> Iterator[tuple[TimerFolder, Timer]]:
        def walk(folders: list[TimerFolder]) -> Iterator[tuple[TimerFolder, Timer]]:
            for folder in folders:
                for timer in folder.timers:
                    yield folder, timer
                if folder.subfolders:
                    yield from walk(folder.subfolders)

        return walk(self._config.folders)

    def iter_timers(self) -> Iterator[Timer]:
        for _, timer in self.iter_folder_timers():
            yield timer

    def find_timer_by(self, predicate: Callable[[Timer], bool]) -> Timer | None:
        for timer in self.iter_timers():
            if predicate(timer):
                return timer
        return None

    def find_timer(self, timer_id: str) -> Timer | None:
        return self.find_timer_by(lambda timer: timer.id == timer_id)

    def require_timer(self, timer_id: str) -> Timer:
        timer = self.find_timer(timer_id)
        if timer is None:
            raise TimerNotFoundError(f"Timer '{timer_id}' not found")
        return timer

    @staticmethod
    def find_subtimer(timer: Timer, subtimer_id: str) -> SubTimer | None:
        for subtimer in timer.subtimers:
            if subtimer.id == subtimer_id:
                return subtimer
        return None

    def find_branch_timer(self, branch_name: str) -> Timer | None:
        return self.find_timer_by(lambda timer: timer.branch_name == branch_name)

    def collect_timers(self, predicate: Callable[[Timer], bool]) -> list[Timer]:
        return [timer for timer in self.iter_timers() if predicate(timer)]

    def all_timers(self, include_archived: bool = True) -> list[Timer]:
        return self.collect_timers(lambda timer: include_archived or not timer.archived)

    def running_timers(self) -> list[Timer]:
        return self.collect_timers(is_timer_running)

    def folder_at_path(self, path: Sequence[int] | None) -> TimerFolder | None:
        if not path:
            return None
        folders = self._config.folders
        current: TimerFolder | None = None
        for index in path:
            if index < 0 or index >= len(folders):
                return None
            current = folders[index]
            folders = current.subfolders
        return current

    def root_folder(self) -> TimerFolder:
        for folder in self._config.folders:
            if folder.name == "":
                return folder
        root = TimerFolder(name="")
        self._config.folders.insert(0, root)
        return root

    def root_timers(self) -> list[Timer]:
        return self.root_folder().timers

    def create_folder(self, name: str, parent_path: Sequence[int] | None = None) -> TimerFolder:
        folder = TimerFolder(name=name)
        if parent_path:
            parent = self.folder_at_path(parent_path)
            if parent is None:
                raise LookupError(f"Folder path {list(parent_path)} not found")
            parent.subfolders.append(folder)
        else:
            self._config.folders.append(folder)
        return folder

    def add_timer(self, timer: Timer, folder_path: Sequence[int] | None = None) -> None:
        folder = self.folder_at_path(folder_path)
        if folder is None:
            timer.folder_path = None
            self.root_timers().append(timer)
            return
        timer.folder_path = list(folder_path or [])
        folder.timers.append(timer)

    def remove_timer(self, timer_id: str) -> Timer | None:
        folder = self.containing_folder(timer_id)
        if folder is None:
            return None
        index = next(index for index, timer in enumerate(folder.timers) if timer.id == timer_id)
        return folder.timers.pop(index)

    def containing_folder(self, timer_id: str) -> TimerFolder | None:
        for folder, timer in self.iter_folder_timers():
            if timer.id == timer_id:
                return folder
        return None

    def move_timer_to_folder(self, timer_id: str, folder_path: Sequence[int] | None = None) -> bool:
        """Move a timer to the end of another folder (root when no path).

        An unknown target path leaves the timer where it was.
        """

        if folder_path and self.folder_at_path(folder_path) is None:
            return False
        timer = self.remove_timer(timer_id)
        if timer is None:
            return False
        self.add_timer(timer, folder_path)
        return True

    def move_timer_by_offset(self, timer_id: str, offset: int) -> bool:
        folder = self.containing_folder(timer_id)
        if folder is None:
            return False
        timers = folder.timers
        current = next(index for index, timer in enumerate(timers) if timer.id == timer_id)
        target = min(max(current + offset, 0), len(timers) - 1)
        if target == current:
            return False
        timers.insert(target, timers.pop(current))
        return True


__all__ = ["SubTimerNotFoundError", "TimerNotFoundError", "TimerStore"]
