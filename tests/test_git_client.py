from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from timekeeper_mcp.vcs import FakeGitClient, GitClient, GitCommandError, GitNotFoundError
from timekeeper_mcp.vcs.utils import sanitize_environment


def test_fake_client_reports_branch_and_commits() -> None:
    client = FakeGitClient(branch="feature/login")

    assert client.current_branch() == "feature/login"
    assert client.last_commit_message() == "Initial commit"

    sha = client.commit("Fix auth\n\nLonger body")
    assert client.head_commit() == sha
    assert client.last_commit_message().startswith("Fix auth")
    assert ("rev-parse", "HEAD") in client.invocations


def test_unsupported_command_raises_command_error() -> None:
    client = FakeGitClient()
    with pytest.raises(GitCommandError) as excinfo:
        client._checked("status")
    assert excinfo.value.result.returncode == 1


def test_explicit_missing_executable(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitClient(tmp_path, executable=tmp_path / "no-such-git")


def test_sanitize_environment_drops_repository_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    monkeypatch.setenv("GIT_WORK_TREE", "/elsewhere")
    monkeypatch.delenv("LC_ALL", raising=False)

    env = sanitize_environment({"EXTRA": "1"})

    assert "GIT_DIR" not in env
    assert "GIT_WORK_TREE" not in env
    assert env["LC_ALL"] == "C"
    assert env["EXTRA"] == "1"


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_real_repository(tmp_path: Path) -> None:
    env = sanitize_environment(
        {
            "GIT_AUTHOR_NAME": "Test",
            "GIT_AUTHOR_EMAIL": "test@example.com",
            "GIT_COMMITTER_NAME": "Test",
            "GIT_COMMITTER_EMAIL": "test@example.com",
        }
    )
    for args in (
        ["init", "-q", "-b", "main"],
        ["commit", "-q", "--allow-empty", "-m", "First commit"],
        ["checkout", "-q", "-b", "feature"],
    ):
        subprocess.run(["git", *args], cwd=tmp_path, env=env, check=True)

    client = GitClient(tmp_path)

    assert client.current_branch() == "feature"
    assert client.last_commit_message() == "First commit"
    assert len(client.head_commit()) == 40
