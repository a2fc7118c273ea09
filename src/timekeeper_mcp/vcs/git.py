"""Synchronous client for the git CLI."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .utils import sanitize_environment


class GitClientError(RuntimeError):
    """Base class for git client errors."""


class GitNotFoundError(GitClientError):
    """Raised when the git executable cannot be located."""


class GitCommandError(GitClientError):
    """Raised when a git command exits with a non-zero status."""

    def __init__(self, result: GitResult) -> None:
        super().__init__(f"{' '.join(result.args)} exited with {result.returncode}: {result.stderr.strip()}")
        self.result = result


@dataclass(slots=True)
class GitResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitClient:
    """Query branch and commit state of one working tree."""

    def __init__(self, repository: Path, executable: Path | None = None) -> None:
        self._repository = Path(repository)
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    @property
    def repository(self) -> Path:
        return self._repository

    @property
    def git_dir(self) -> Path:
        return self._repository / ".git"

    def current_branch(self) -> str:
        return self._checked("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def head_commit(self) -> str:
        return self._checked("rev-parse", "HEAD").stdout.strip()

    def last_commit_message(self) -> str:
        return self._checked("log", "-1", "--pretty=%B").stdout.strip()

    def _checked(self, *args: str) -> GitResult:
        result = self._invoke(*args)
        if not result.ok:
            raise GitCommandError(result)
        return result

    def _invoke(self, *args: str) -> GitResult:
        cmd = [str(self._executable_path), *args]
        try:
            completed = subprocess.run(
                cmd,
                cwd=self._repository,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=sanitize_environment(),
                check=False,
            )
        except OSError as exc:
            raise GitClientError(f"Failed to run {cmd[0]}: {exc}") from exc
        return GitResult(args=tuple(cmd), returncode=completed.returncode, stdout=completed.stdout, stderr=completed.stderr)


class FakeGitClient(GitClient):
    """Test double that answers from in-memory branch and commit state."""

    def __init__(  # type: ignore[override]
        self,
        branch: str = "main",
        commits: Iterable[tuple[str, str]] | None = None,
        repository: Path | None = None,
    ) -> None:
        self._repository = Path(repository or "/tmp/fake-repo")
        self._executable_path = Path("/tmp/fake-git")
        self.branch = branch
        self._commits: list[tuple[str, str]] = list(commits or [("0" * 40, "Initial commit")])
        self.fail_with: GitClientError | None = None
        self._invocations: list[tuple[str, ...]] = []

    def commit(self, message: str, sha: str | None = None) -> str:
        sha = sha or f"{len(self._commits):040x}"
        self._commits.append((sha, message))
        return sha

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    def _invoke(self, *args: str) -> GitResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self.fail_with is not None:
            raise self.fail_with
        if args == ("rev-parse", "--abbrev-ref", "HEAD"):
            stdout = self.branch
        elif args == ("rev-parse", "HEAD"):
            stdout = self._commits[-1][0]
        elif args[:1] == ("log",):
            stdout = self._commits[-1][1]
        else:
            return GitResult(args=tuple(args), returncode=1, stdout="", stderr=f"unsupported: {args}")
        return GitResult(args=tuple(args), returncode=0, stdout=stdout + "\n", stderr="")


__all__ = [
    "FakeGitClient",
    "GitClient",
    "GitClientError",
    "GitCommandError",
    "GitNotFoundError",
    "GitResult",
]
