"""Stable constants shared across git-test components."""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import Final

# Git notes refs.
DEFAULT_NOTES_PREFIX: Final[str] = "refs/notes/tests"
DEFAULT_SUMMARY_REF: Final[str] = "refs/notes/test-summary"

# Test definitions live in git config as ``test.<name>.command``.
TEST_CONFIG_SECTION: Final[str] = "test"
TEST_COMMAND_KEY: Final[str] = "command"
DEFAULT_TEST_NAME: Final[str] = "default"
TEST_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9._-]+$")

# Default runtime paths (relative to the repository root).
DEFAULT_WORKTREE_DIR: Final[PurePosixPath] = PurePosixPath(".worktrees")
CONFIG_FILE_NAME: Final[str] = "git-test.toml"
ENV_PREFIX: Final[str] = "GIT_TEST_"

# Stored verdict output is trimmed to its tail.
DEFAULT_MAX_OUTPUT_CHARS: Final[int] = 4000

SHELL_ARGV: Final[tuple[str, ...]] = ("sh", "-c")

__all__ = [
    "CONFIG_FILE_NAME",
    "DEFAULT_MAX_OUTPUT_CHARS",
    "DEFAULT_NOTES_PREFIX",
    "DEFAULT_SUMMARY_REF",
    "DEFAULT_TEST_NAME",
    "DEFAULT_WORKTREE_DIR",
    "ENV_PREFIX",
    "SHELL_ARGV",
    "TEST_COMMAND_KEY",
    "TEST_CONFIG_SECTION",
    "TEST_NAME_PATTERN",
]
