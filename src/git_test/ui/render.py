"""Console rendering for ``git-test`` output.

Job lines and the final tally are printed through a ``rich`` console. Color
follows ``--color`` and ``NO_COLOR``; test failures (``FAIL``) and
infrastructure errors (``ERROR``) are always labelled differently.
"""

from __future__ import annotations

import sys
from typing import IO, TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

from git_test.domain.models import JobState
from git_test.observability.logging import ColorMode, OutputConfig

if TYPE_CHECKING:
    from collections.abc import Sequence

    from git_test.domain.models import Job, RunReport, TestDefinition, Verdict

_STYLES = {
    "PASS": "bold green",
    "FAIL": "bold red",
    "ERROR": "bold magenta",
    "UNKNOWN": "yellow",
    "FORGOT": "cyan",
}


class CLIRenderer:
    """Thin CLI output renderer."""

    def __init__(self, console: Console, *, verbosity: int = 0) -> None:
        self.console = console
        self.verbosity = verbosity

    def text(self, line: str) -> None:
        self.console.print(escape(line))

    def warning(self, text: str) -> None:
        self.console.print(f"[yellow]warning:[/yellow] {escape(text)}")

    def job(self, job: Job) -> None:
        """Print one finished job."""

        label, note = _job_label(job)
        if self.verbosity < 0 and label == "PASS":
            return
        line = f"[{_STYLES[label]}]{label:<7}[/] {escape(job.test_name)} @ {job.commit[:12]}"
        if note:
            line = f"{line} [dim]({escape(note)})[/dim]"
        self.console.print(line)
        if label == "FAIL" and self.verbosity >= 1 and job.verdict is not None and job.executed:
            for stream_text in (job.verdict.stdout, job.verdict.stderr):
                if stream_text.strip():
                    self.console.print(escape(stream_text.rstrip("\n")), style="dim")

    def run_summary(self, report: RunReport) -> None:
        jobs = report.jobs
        passed = sum(1 for job in jobs if job.verdict is not None and job.verdict.passed and not job.errored)
        failed = sum(1 for job in jobs if job.failed and not job.errored)
        errored = sum(1 for job in jobs if job.errored)
        forgotten = sum(1 for job in jobs if job.forgotten)
        unknown = sum(
            1 for job in jobs if job.verdict is None and not job.errored and not job.forgotten
        )

        parts = [f"{passed} passed", f"{failed} failed", f"{errored} errored"]
        if unknown:
            parts.append(f"{unknown} unknown")
        if forgotten:
            parts.append(f"{forgotten} forgotten")
        tally = ", ".join(parts)
        prefix = "dry run: " if report.dry_run else ""
        self.console.print(
            f"{prefix}{tally} across {len(report.commits)} commit(s); "
            f"{report.executions} executed"
        )
        for commit_report in report.commits:
            if commit_report.summary_error is not None:
                self.console.print(f"[{_STYLES['ERROR']}]ERROR[/] {escape(str(commit_report.summary_error))}")
        if report.stopped_early:
            self.console.print("[yellow]stopped after the first failing commit; use --keep-going to continue[/yellow]")

    def tests(self, definitions: Sequence[TestDefinition]) -> None:
        for definition in definitions:
            self.console.print(f"[bold]{escape(definition.name)}[/bold]: {escape(definition.command)}")

    def result(self, commit: str, test: str, verdict: Verdict | None) -> None:
        if verdict is None:
            label = "UNKNOWN"
        else:
            label = "PASS" if verdict.passed else "FAIL"
        self.console.print(f"[{_STYLES[label]}]{label:<7}[/] {escape(test)} @ {commit[:12]}")
        if label == "FAIL" and self.verbosity >= 1 and verdict is not None:
            for stream_text in (verdict.stdout, verdict.stderr):
                if stream_text.strip():
                    self.console.print(escape(stream_text.rstrip("\n")), style="dim")


def create_renderer(output: OutputConfig | None = None, *, stream: IO[str] | None = None) -> CLIRenderer:
    """Create a renderer writing to ``stream`` (stdout by default)."""

    config = output if output is not None else OutputConfig()
    target = stream if stream is not None else sys.stdout
    use_color = config.use_color(target)
    console = Console(
        file=target,
        no_color=not use_color,
        force_terminal=True if config.color is ColorMode.ALWAYS else None,
        color_system="auto" if use_color else None,
        highlight=False,
        soft_wrap=True,
    )
    return CLIRenderer(console, verbosity=config.verbosity)


def _job_label(job: Job) -> tuple[str, str | None]:
    if job.state is JobState.ERRORED:
        return "ERROR", job.error.detail if job.error is not None else None
    if job.forgotten:
        return "FORGOT", None
    if job.verdict is None:
        return "UNKNOWN", "not cached"
    label = "PASS" if job.verdict.passed else "FAIL"
    return label, None if job.executed else "cached"


__all__ = ["CLIRenderer", "create_renderer"]
