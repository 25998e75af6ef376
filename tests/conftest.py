"""Shared fixtures: throwaway git repositories in a temporary workspace."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def init_repo(path: Path) -> Path:
    """Initialize a git repo at path with enough config for commits."""
    path.mkdir(parents=True, exist_ok=True)
    for args in (
        ["init", "-q"],
        ["config", "user.email", "test@example.com"],
        ["config", "user.name", "tester"],
        ["config", "commit.gpgsign", "false"],
    ):
        subprocess.run(["git", *args], cwd=path, check=True, capture_output=True)
    return path.resolve()


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary working directory that git will not search above."""
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.resolve().parent))
    monkeypatch.delenv("GIT_BATCH_TIMEOUT", raising=False)
    monkeypatch.delenv("GIT_BATCH_GIT", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path.resolve()
