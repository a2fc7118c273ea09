"""Git integration for branch-driven timers."""

from .git import (
    FakeGitClient,
    GitClient,
    GitClientError,
    GitCommandError,
    GitNotFoundError,
    GitResult,
)
from .utils import sanitize_environment
from .watcher import GitWatcher

__all__ = [
    "FakeGitClient",
    "GitClient",
    "GitClientError",
    "GitCommandError",
    "GitNotFoundError",
    "GitResult",
    "GitWatcher",
    "sanitize_environment",
]
