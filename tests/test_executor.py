"""Tests for git invocation under a deadline."""

from __future__ import annotations

import subprocess
import time
from pathlib import Path

import pytest
from conftest import init_repo, requires_git

from git_batch.core import (
    CommandTimeoutError,
    Deadline,
    GitCommandError,
    GitOperations,
    GitRepository,
    Operation,
    OutcomeStatus,
    ToolNotFoundError,
    build_invocation,
)


class TestDeadline:
    def test_fresh_deadline_has_budget_left(self) -> None:
        deadline = Deadline.after(60)

        assert not deadline.expired
        assert 0 < deadline.remaining() <= 60

    def test_past_deadline_is_expired(self) -> None:
        deadline = Deadline(budget=1, expires_at=time.monotonic() - 1)

        assert deadline.expired
        assert deadline.remaining() == 0


@requires_git
class TestGitOperations:
    def test_stream_and_capture(self, workspace: Path) -> None:
        repo = init_repo(workspace / "repo")
        (repo / "test.txt").write_text("hello")
        ops = GitOperations(repo)
        deadline = Deadline.after(30)

        ops.stream(["add", "test.txt"], deadline)
        ops.capture(["commit", "-m", "add test.txt"], deadline)

        assert "add test.txt" in ops.capture(["log", "--oneline"], deadline)

    def test_non_zero_exit_carries_status_and_output(self, workspace: Path) -> None:
        repo = init_repo(workspace / "repo")
        ops = GitOperations(repo)

        with pytest.raises(GitCommandError) as excinfo:
            ops.capture(["commit", "-m", "empty"], Deadline.after(30))

        assert excinfo.value.returncode != 0
        assert "nothing" in excinfo.value.output

    def test_stream_failure_raises(self, workspace: Path) -> None:
        with pytest.raises(GitCommandError) as excinfo:
            GitOperations(workspace).stream(["rev-parse", "--verify", "nope"], Deadline.after(30))

        assert excinfo.value.output == ""


class TestFailureModes:
    def test_expired_deadline_never_spawns(
        self, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def forbidden(*args, **kwargs):
            raise AssertionError("subprocess must not start")

        monkeypatch.setattr(subprocess, "run", forbidden)
        deadline = Deadline(budget=5, expires_at=time.monotonic() - 1)

        with pytest.raises(CommandTimeoutError) as excinfo:
            GitOperations(workspace).stream(["status"], deadline)

        assert "deadline of 5s exceeded" in str(excinfo.value)

    def test_timeout_during_run(self, workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def slow(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        monkeypatch.setattr(subprocess, "run", slow)

        with pytest.raises(CommandTimeoutError):
            GitOperations(workspace).capture(["pull"], Deadline.after(1))

    def test_missing_executable(self, workspace: Path) -> None:
        ops = GitOperations(workspace, executable="git-does-not-exist-12345")

        with pytest.raises(ToolNotFoundError):
            ops.stream(["status"], Deadline.after(5))


class TestRepositoryExecute:
    @pytest.fixture
    def repo(self, workspace: Path) -> GitRepository:
        return GitRepository(workspace)

    def test_nothing_to_commit_is_benign(
        self, repo: GitRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def capture(self, args, deadline):
            raise GitCommandError(["git", *args], 1, "On branch main\nnothing to commit, working tree clean\n")

        monkeypatch.setattr(GitOperations, "capture", capture)

        result = repo.execute(
            Operation.COMMIT, build_invocation(Operation.COMMIT, message="msg"), Deadline.after(5)
        )

        assert result.status == OutcomeStatus.NO_OP
        assert result.success
        assert result.error == ""

    def test_nothing_added_to_commit_is_benign(
        self, repo: GitRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def capture(self, args, deadline):
            raise GitCommandError(["git", *args], 1, "nothing added to commit but untracked files present\n")

        monkeypatch.setattr(GitOperations, "capture", capture)

        result = repo.execute(
            Operation.COMMIT, build_invocation(Operation.COMMIT, message="msg"), Deadline.after(5)
        )

        assert result.status == OutcomeStatus.NO_OP

    def test_other_commit_failure_is_reported(
        self, repo: GitRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def capture(self, args, deadline):
            raise GitCommandError(["git", *args], 128, "fatal: unable to auto-detect email address\n")

        monkeypatch.setattr(GitOperations, "capture", capture)

        result = repo.execute(
            Operation.COMMIT, build_invocation(Operation.COMMIT, message="msg"), Deadline.after(5)
        )

        assert result.status == OutcomeStatus.FAILED
        assert "exited with status 128" in result.error
        assert "auto-detect" in result.output

    def test_timeout_is_a_failed_result(
        self, repo: GitRepository, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def stream(self, args, deadline):
            raise CommandTimeoutError(["git", *args], 2)

        monkeypatch.setattr(GitOperations, "stream", stream)

        result = repo.execute(Operation.PULL, build_invocation(Operation.PULL), Deadline.after(5))

        assert result.status == OutcomeStatus.FAILED
        assert "timed out" in result.error
