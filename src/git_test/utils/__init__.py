"""Shared utilities."""

from git_test.utils.concurrency import CancellationToken, QueueWorkerPool, default_concurrency
from git_test.utils.fs import is_empty_dir, prune_empty_parents, safe_delete

__all__ = [
    "CancellationToken",
    "QueueWorkerPool",
    "default_concurrency",
    "is_empty_dir",
    "prune_empty_parents",
    "safe_delete",
]
