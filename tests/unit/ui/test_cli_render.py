from __future__ import annotations

import io

from git_test.domain.models import CommitReport, Job, Outcome, RunReport, TestDefinition, Verdict
from git_test.errors import ProvisionError
from git_test.observability.logging import ColorMode, OutputConfig
from git_test.ui.render import create_renderer

_COMMIT = "1234567890abcdef" * 2 + "12345678"


def _job(name: str, outcome: Outcome | None, *, executed: bool = True) -> Job:
    job = Job(commit=_COMMIT, tree="t" * 40, test=TestDefinition(name=name, command="true"))
    if outcome is not None:
        job.verdict = Verdict(name, job.tree, outcome, stdout="details\n")
    job.executed = executed
    return job


def test_fail_and_error_are_labelled_differently() -> None:
    stream = io.StringIO()
    renderer = create_renderer(OutputConfig(color=ColorMode.NEVER), stream=stream)
    errored = _job("lint", None, executed=False)
    errored.fail_with(ProvisionError("disk full"))

    renderer.job(_job("unit", Outcome.FAIL))
    renderer.job(errored)

    lines = stream.getvalue().splitlines()
    assert lines[0].startswith("FAIL")
    assert "unit @ 1234567890ab" in lines[0]
    assert lines[1].startswith("ERROR")
    assert "disk full" in lines[1]


def test_cached_and_unknown_annotations() -> None:
    stream = io.StringIO()
    renderer = create_renderer(OutputConfig(color=ColorMode.NEVER), stream=stream)

    renderer.job(_job("unit", Outcome.PASS, executed=False))
    renderer.job(_job("lint", None, executed=False))

    output = stream.getvalue()
    assert "PASS" in output and "(cached)" in output
    assert "UNKNOWN" in output and "(not cached)" in output


def test_quiet_mode_hides_passes() -> None:
    stream = io.StringIO()
    renderer = create_renderer(OutputConfig(verbosity=-1, color=ColorMode.NEVER), stream=stream)

    renderer.job(_job("unit", Outcome.PASS))

    assert stream.getvalue() == ""


def test_verbose_mode_shows_failure_output() -> None:
    stream = io.StringIO()
    renderer = create_renderer(OutputConfig(verbosity=1, color=ColorMode.NEVER), stream=stream)

    renderer.job(_job("unit", Outcome.FAIL))

    assert "details" in stream.getvalue()


def test_run_summary_tally() -> None:
    stream = io.StringIO()
    renderer = create_renderer(OutputConfig(color=ColorMode.NEVER), stream=stream)
    report = RunReport(
        commits=[
            CommitReport(
                _COMMIT,
                "t" * 40,
                jobs=[
                    _job("a", Outcome.PASS),
                    _job("b", Outcome.FAIL),
                    _job("c", None, executed=False),
                ],
            )
        ],
        stopped_early=True,
    )

    renderer.run_summary(report)

    output = stream.getvalue()
    assert "1 passed, 1 failed, 0 errored, 1 unknown across 1 commit(s); 2 executed" in output
    assert "--keep-going" in output


def test_no_color_output_has_no_escape_codes() -> None:
    stream = io.StringIO()
    renderer = create_renderer(OutputConfig(color=ColorMode.NEVER), stream=stream)

    renderer.job(_job("unit", Outcome.PASS))

    assert "\x1b[" not in stream.getvalue()


def test_always_color_emits_escape_codes() -> None:
    stream = io.StringIO()
    renderer = create_renderer(OutputConfig(color=ColorMode.ALWAYS), stream=stream)

    renderer.job(_job("unit", Outcome.FAIL))

    assert "\x1b[" in stream.getvalue()
