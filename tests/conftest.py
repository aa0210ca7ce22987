"""Shared fixtures: isolated git environment and throwaway repositories."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from git_helpers import GIT_IDENTITY, commit_file, run_git


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    monkeypatch.delenv("NO_COLOR", raising=False)
    for key in list(os.environ):
        if key.startswith("GIT_TEST_"):
            monkeypatch.delenv(key, raising=False)
    for key, value in GIT_IDENTITY.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository with one commit on branch ``main``."""

    repo_root = tmp_path / "repo"
    repo_root.mkdir()
    run_git(repo_root, "init", "--initial-branch=main", "--quiet")
    commit_file(repo_root, "README", "seed\n", "initial")
    return repo_root
