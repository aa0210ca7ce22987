"""Git-facing collaborators: plumbing, revision resolution and the test registry."""

from git_test.git.registry import TestRegistry
from git_test.git.repository import CommandResult, GitRepository
from git_test.git.resolver import CommitResolver, dedupe_preserving_order

__all__ = [
    "CommandResult",
    "CommitResolver",
    "GitRepository",
    "TestRegistry",
    "dedupe_preserving_order",
]
