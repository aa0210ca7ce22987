"""Error taxonomy for git-test.

Invocation-level errors (configuration, resolution, conflicting flags) abort a
run before any job starts. Job-level errors (provisioning, execution, storage)
are attached to a single ``(commit, test)`` job and recorded on it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class GitTestError(RuntimeError):
    """Base error for all git-test failures."""


class GitCommandError(GitTestError):
    """Raised when a git subprocess command exits non-zero."""

    def __init__(
        self,
        *,
        command: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
    ) -> None:
        self.command = tuple(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"git command failed ({returncode}): {' '.join(command)}"
        if stderr.strip():
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class InvocationError(GitTestError):
    """Errors that invalidate the whole invocation; nothing is persisted."""


class ConfigurationError(InvocationError):
    """Unknown test name or invalid configuration value."""


class ResolutionError(InvocationError):
    """A revision expression could not be resolved to commits."""


class ConflictError(InvocationError):
    """Incompatible run options were requested together."""


class JobError(GitTestError):
    """Failure scoped to one ``(commit, test)`` job."""

    kind = "job"

    def __init__(self, message: str, *, commit: str | None = None, test: str | None = None) -> None:
        self.commit = commit
        self.test = test
        self.detail = message
        super().__init__(message)

    def attach(self, *, commit: str, test: str) -> JobError:
        """Bind job identity to an error raised below the scheduler."""
        if self.commit is None:
            self.commit = commit
        if self.test is None:
            self.test = test
        return self

    def __str__(self) -> str:
        if self.commit is None and self.test is None:
            return self.detail
        return f"[{self.test} @ {(self.commit or '?')[:12]}] {self.kind} error: {self.detail}"


class ProvisionError(JobError):
    """A worktree could not be created or removed."""

    kind = "provision"


class ExecutionError(JobError):
    """The test command could not be launched."""

    kind = "execution"


class StoreError(JobError):
    """A verdict or summary could not be persisted."""

    kind = "store"


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "ExecutionError",
    "GitCommandError",
    "GitTestError",
    "InvocationError",
    "JobError",
    "ProvisionError",
    "ResolutionError",
    "StoreError",
]
