"""Dataclass domain models for test definitions, verdicts, and scheduled jobs.

File: src/git_test/domain/models.py

Purpose
- Define the values passed between the registry, store, runner and renderer.
- Enforce the job state machine.

Non-functional requirements
- Pure data; no git or filesystem access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from git_test.constants import TEST_NAME_PATTERN
from git_test.errors import ConfigurationError, JobError
from git_test.main import ExitCode


class Outcome(StrEnum):
    PASS = "pass"
    FAIL = "fail"

    @property
    def marker(self) -> str:
        return "Pass" if self is Outcome.PASS else "Fail"

    @classmethod
    def from_exit_code(cls, exit_code: int | None) -> Outcome:
        return cls.PASS if exit_code == 0 else cls.FAIL


class JobState(StrEnum):
    PENDING = "pending"
    SKIPPED = "skipped"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    RECORDING = "recording"
    DONE = "done"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES: Final[frozenset[JobState]] = frozenset(
    {JobState.SKIPPED, JobState.DONE, JobState.ERRORED}
)

_ALLOWED_TRANSITIONS: Final[dict[JobState, frozenset[JobState]]] = {
    JobState.PENDING: frozenset({JobState.SKIPPED, JobState.PROVISIONING, JobState.ERRORED}),
    JobState.PROVISIONING: frozenset({JobState.RUNNING, JobState.ERRORED}),
    JobState.RUNNING: frozenset({JobState.RECORDING, JobState.ERRORED}),
    JobState.RECORDING: frozenset({JobState.DONE, JobState.ERRORED}),
    JobState.SKIPPED: frozenset(),
    JobState.DONE: frozenset(),
    JobState.ERRORED: frozenset(),
}

SUMMARY_ERROR_MARKER: Final[str] = "Error"
SUMMARY_UNKNOWN_MARKER: Final[str] = "Unknown"


@dataclass(frozen=True, slots=True)
class TestDefinition:
    """A named shell command stored in git config."""

    __test__ = False  # keep pytest from collecting this as a test class

    name: str
    command: str

    def __post_init__(self) -> None:
        validate_test_name(self.name)
        if not self.command.strip():
            raise ConfigurationError(f"test '{self.name}' has an empty command")


@dataclass(frozen=True, slots=True)
class Verdict:
    """Recorded outcome of running one test against one tree."""

    test: str
    tree: str
    outcome: Outcome
    stdout: str = ""
    stderr: str = ""
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def passed(self) -> bool:
        return self.outcome is Outcome.PASS


@dataclass(slots=True)
class Job:
    """Unit of scheduling: one test run against one commit."""

    commit: str
    tree: str
    test: TestDefinition
    state: JobState = JobState.PENDING
    verdict: Verdict | None = None
    error: JobError | None = None
    executed: bool = False
    forgotten: bool = False

    @property
    def test_name(self) -> str:
        return self.test.name

    @property
    def key(self) -> tuple[str, str]:
        return (self.commit, self.test.name)

    @property
    def failed(self) -> bool:
        return self.verdict is not None and self.verdict.outcome is Outcome.FAIL

    @property
    def errored(self) -> bool:
        return self.state is JobState.ERRORED

    def advance(self, new_state: JobState) -> None:
        allowed = _ALLOWED_TRANSITIONS[self.state]
        if new_state not in allowed:
            raise ValueError(
                f"illegal job transition {self.state.value} -> {new_state.value} "
                f"for {self.test.name} @ {self.commit[:12]}"
            )
        self.state = new_state

    def fail_with(self, error: JobError) -> None:
        self.error = error.attach(commit=self.commit, test=self.test.name)
        self.advance(JobState.ERRORED)

    @property
    def summary_marker(self) -> str:
        if self.state is JobState.ERRORED:
            return SUMMARY_ERROR_MARKER
        if self.verdict is None:
            return SUMMARY_UNKNOWN_MARKER
        return self.verdict.outcome.marker


@dataclass(slots=True)
class CommitReport:
    """All jobs scheduled for one commit."""

    commit: str
    tree: str
    jobs: list[Job] = field(default_factory=list)
    summary_written: bool = False
    summary_error: JobError | None = None

    @property
    def complete(self) -> bool:
        return all(job.state.is_terminal for job in self.jobs)

    @property
    def failed(self) -> bool:
        return any(job.failed for job in self.jobs)

    @property
    def errored(self) -> bool:
        return self.summary_error is not None or any(job.errored for job in self.jobs)

    def summary_entries(self) -> dict[str, str]:
        return {job.test_name: job.summary_marker for job in self.jobs}

    @property
    def executed(self) -> bool:
        return any(job.executed for job in self.jobs)


@dataclass(slots=True)
class RunReport:
    """Aggregated result of a ``run`` invocation."""

    commits: list[CommitReport] = field(default_factory=list)
    dry_run: bool = False
    stopped_early: bool = False

    @property
    def jobs(self) -> list[Job]:
        return [job for report in self.commits for job in report.jobs]

    @property
    def failed(self) -> bool:
        return any(report.failed for report in self.commits)

    @property
    def errored(self) -> bool:
        return any(report.errored for report in self.commits)

    @property
    def executions(self) -> int:
        return sum(1 for job in self.jobs if job.executed)

    @property
    def exit_code(self) -> int:
        if self.dry_run:
            return int(ExitCode.SUCCESS)
        if self.errored:
            return int(ExitCode.INFRASTRUCTURE_ERROR)
        if self.failed:
            return int(ExitCode.TESTS_FAILED)
        return int(ExitCode.SUCCESS)


def validate_test_name(name: str) -> str:
    if not name or TEST_NAME_PATTERN.fullmatch(name) is None or name in {".", ".."}:
        raise ConfigurationError(f"invalid test name: {name!r}")
    return name


__all__ = [
    "CommitReport",
    "Job",
    "JobState",
    "Outcome",
    "RunReport",
    "SUMMARY_ERROR_MARKER",
    "SUMMARY_UNKNOWN_MARKER",
    "TestDefinition",
    "Verdict",
    "validate_test_name",
]
