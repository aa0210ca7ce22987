"""Domain models: test definitions, verdicts, jobs and run reports."""

from git_test.domain.models import (
    CommitReport,
    Job,
    JobState,
    Outcome,
    RunReport,
    TestDefinition,
    Verdict,
    validate_test_name,
)

__all__ = [
    "CommitReport",
    "Job",
    "JobState",
    "Outcome",
    "RunReport",
    "TestDefinition",
    "Verdict",
    "validate_test_name",
]
