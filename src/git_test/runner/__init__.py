"""Job scheduling and execution."""

from git_test.runner.scheduler import RunOptions, TestRunner

__all__ = ["RunOptions", "TestRunner"]
