from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from git_test.domain.models import JobState, Outcome, TestDefinition, Verdict
from git_test.errors import (
    ConflictError,
    ExecutionError,
    ProvisionError,
    StoreError,
)
from git_test.execution import CommandResult
from git_test.main import ExitCode
from git_test.runner import RunOptions, TestRunner

if TYPE_CHECKING:
    from collections.abc import Mapping

    from git_test.execution import CommandSpec

_BASE = Path("/fake-worktrees")


class FakeStore:
    def __init__(self) -> None:
        self.verdicts: dict[tuple[str, str], Verdict] = {}
        self.summaries: dict[str, dict[str, str]] = {}
        self.summary_writes: list[str] = []
        self.put_calls = 0
        self.get_calls = 0
        self.fail_puts = False
        self._lock = threading.Lock()

    def get(self, test: str, tree: str) -> Verdict | None:
        with self._lock:
            self.get_calls += 1
            return self.verdicts.get((test, tree))

    def put(self, verdict: Verdict) -> None:
        if self.fail_puts:
            raise StoreError("notes ref is locked")
        with self._lock:
            self.put_calls += 1
            self.verdicts[(verdict.test, verdict.tree)] = verdict

    def forget(self, test: str, tree: str) -> bool:
        with self._lock:
            return self.verdicts.pop((test, tree), None) is not None

    def put_summary(self, commit: str, outcomes: Mapping[str, str]) -> bool:
        with self._lock:
            self.summary_writes.append(commit)
            self.summaries[commit] = dict(outcomes)
        return True


class FakeProvisioner:
    def __init__(self, *, isolated: bool = True, failing: set[str] | None = None) -> None:
        self._isolated = isolated
        self._failing = failing or set()
        self.active: set[Path] = set()
        self.collisions: list[Path] = []
        self.created: list[Path] = []
        self.destroyed: list[Path] = []
        self.pruned = 0
        self.closed = 0
        self._lock = threading.Lock()

    @property
    def isolated(self) -> bool:
        return self._isolated

    def path_for(self, key: str, test: str) -> Path:
        return _BASE / key / test

    def create(self, commit: str, path: Path) -> None:
        with self._lock:
            if path in self.active:
                self.collisions.append(path)
            self.active.add(path)
            self.created.append(path)
        if commit in self._failing:
            raise ProvisionError(f"cannot check out {commit}")

    def destroy(self, path: Path) -> None:
        with self._lock:
            self.active.discard(path)
            self.destroyed.append(path)

    def prune(self) -> None:
        self.pruned += 1

    def close(self) -> None:
        self.closed += 1


class FakeExecutor:
    """Exit codes keyed by ``(commit, test)``; everything else passes."""

    def __init__(
        self,
        exit_codes: Mapping[tuple[str, str], int] | None = None,
        *,
        delay: float = 0.0,
        unlaunchable: set[str] | None = None,
    ) -> None:
        self._exit_codes = dict(exit_codes or {})
        self._delay = delay
        self._unlaunchable = unlaunchable or set()
        self.calls: list[tuple[str, str]] = []
        self.running = 0
        self.peak = 0

    async def run(self, spec: CommandSpec) -> CommandResult:
        cwd = Path(spec.cwd or "")
        key = (cwd.parent.name, cwd.name)
        if key[1] in self._unlaunchable:
            raise ExecutionError(f"could not launch {spec.display()!r}")
        self.calls.append(key)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(self._delay)
        finally:
            self.running -= 1
        exit_code = self._exit_codes.get(key, 0)
        return CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            stdout=f"ran {key[1]}\n",
            stderr="",
            duration_ms=1,
        )


class FakeResolver:
    def __init__(self, trees: Mapping[str, str]) -> None:
        self._trees = dict(trees)

    def resolve_tree(self, commit: str) -> str:
        return self._trees[commit]


def _definition(name: str = "default", command: str = "true") -> TestDefinition:
    return TestDefinition(name=name, command=command)


def _runner(
    *,
    store: FakeStore,
    provisioner: FakeProvisioner | None = None,
    executor: FakeExecutor | None = None,
    trees: Mapping[str, str],
    **options: object,
) -> TestRunner:
    return TestRunner(
        store=store,  # type: ignore[arg-type]
        provisioner=provisioner or FakeProvisioner(),
        executor=executor or FakeExecutor(),
        resolver=FakeResolver(trees),  # type: ignore[arg-type]
        options=RunOptions(**options),  # type: ignore[arg-type]
    )


async def test_single_commit_pass_records_verdict_and_summary() -> None:
    store = FakeStore()
    report = await _runner(store=store, trees={"c1": "t1"}).run(["c1"], [_definition()])

    assert report.exit_code == ExitCode.SUCCESS
    assert store.verdicts[("default", "t1")].outcome is Outcome.PASS
    assert store.summaries["c1"] == {"default": "Pass"}
    job = report.jobs[0]
    assert job.state is JobState.DONE
    assert job.executed


async def test_second_run_reuses_cached_verdicts() -> None:
    store = FakeStore()
    executor = FakeExecutor()
    trees = {"c1": "t1", "c2": "t2"}

    first = await _runner(store=store, executor=executor, trees=trees).run(
        ["c1", "c2"], [_definition()]
    )
    summaries_after_first = dict(store.summaries)
    second = await _runner(store=store, executor=executor, trees=trees).run(
        ["c1", "c2"], [_definition()]
    )

    assert first.executions == 2
    assert second.executions == 0
    assert all(job.state is JobState.SKIPPED for job in second.jobs)
    assert [job.verdict for job in second.jobs] == [job.verdict for job in first.jobs]
    assert store.summaries == summaries_after_first
    assert len(executor.calls) == 2


async def test_commits_sharing_a_tree_execute_once() -> None:
    store = FakeStore()
    executor = FakeExecutor()

    report = await _runner(
        store=store, executor=executor, trees={"original": "t1", "rebased": "t1"}
    ).run(["original", "rebased"], [_definition()])

    assert report.executions == 1
    assert executor.calls == [("original", "default")]
    rebased = report.commits[1].jobs[0]
    assert rebased.state is JobState.SKIPPED
    assert rebased.verdict is not None and rebased.verdict.passed
    assert store.summaries["rebased"] == {"default": "Pass"}


async def test_keep_going_runs_a_shared_tree_once_across_parallel_workers() -> None:
    store = FakeStore()
    executor = FakeExecutor(delay=0.01)
    finished: list[str] = []
    runner = TestRunner(
        store=store,  # type: ignore[arg-type]
        provisioner=FakeProvisioner(),
        executor=executor,
        resolver=FakeResolver(  # type: ignore[arg-type]
            {"original": "t1", "rebased": "t1", "other": "t2"}
        ),
        options=RunOptions(keep_going=True, jobs=2),
        on_job_finished=lambda job: finished.append(job.commit),
    )

    report = await runner.run(["original", "rebased", "other"], [_definition()])

    assert report.executions == 2
    assert sorted(executor.calls) == [("original", "default"), ("other", "default")]
    assert sorted(finished) == ["original", "other", "rebased"]
    rebased = report.commits[1].jobs[0]
    assert rebased.state is JobState.SKIPPED
    assert not rebased.executed
    assert rebased.verdict is report.commits[0].jobs[0].verdict
    assert store.put_calls == 2
    assert store.summaries["rebased"] == {"default": "Pass"}
    assert sorted(store.summary_writes) == ["original", "other", "rebased"]


async def test_shared_tree_inherits_the_error_of_its_run() -> None:
    store = FakeStore()
    provisioner = FakeProvisioner(failing={"original"})

    report = await _runner(
        store=store,
        provisioner=provisioner,
        trees={"original": "t1", "rebased": "t1"},
        keep_going=True,
        jobs=2,
    ).run(["original", "rebased"], [_definition()])

    assert len(provisioner.created) == 1
    rebased = report.commits[1].jobs[0]
    assert rebased.state is JobState.ERRORED
    assert rebased.error is not None
    assert rebased.error.commit == "rebased"
    assert store.summaries["rebased"] == {"default": "Error"}
    assert report.exit_code == ExitCode.INFRASTRUCTURE_ERROR


async def test_dry_run_reports_commits_after_a_cached_failure() -> None:
    store = FakeStore()
    store.verdicts[("default", "t1")] = Verdict("default", "t1", Outcome.FAIL)
    store.verdicts[("default", "t3")] = Verdict("default", "t3", Outcome.PASS)

    report = await _runner(
        store=store, trees={"c1": "t1", "c2": "t2", "c3": "t3"}, dry_run=True
    ).run(["c1", "c2", "c3"], [_definition()])

    assert [item.commit for item in report.commits] == ["c1", "c2", "c3"]
    assert [job.summary_marker for job in report.jobs] == ["Fail", "Unknown", "Pass"]
    assert not report.stopped_early
    assert report.exit_code == ExitCode.SUCCESS


async def test_force_reruns_and_overwrites() -> None:
    store = FakeStore()
    trees = {"c1": "t1"}
    await _runner(store=store, trees=trees).run(["c1"], [_definition()])
    first_verdict = store.verdicts[("default", "t1")]

    executor = FakeExecutor({("c1", "default"): 1})
    report = await _runner(store=store, executor=executor, trees=trees, force=True).run(
        ["c1"], [_definition()]
    )

    assert report.executions == 1
    assert store.put_calls == 2
    assert store.verdicts[("default", "t1")] is not first_verdict
    assert store.verdicts[("default", "t1")].outcome is Outcome.FAIL
    assert store.summaries["c1"] == {"default": "Fail"}
    assert report.exit_code == ExitCode.TESTS_FAILED


async def test_retest_reruns_cached_failures_only() -> None:
    store = FakeStore()
    store.verdicts[("default", "t-pass")] = Verdict("default", "t-pass", Outcome.PASS)
    store.verdicts[("default", "t-fail")] = Verdict("default", "t-fail", Outcome.FAIL)
    executor = FakeExecutor()

    report = await _runner(
        store=store,
        executor=executor,
        trees={"good": "t-pass", "bad": "t-fail"},
        retest=True,
        keep_going=True,
    ).run(["good", "bad"], [_definition()])

    assert executor.calls == [("bad", "default")]
    assert store.verdicts[("default", "t-fail")].outcome is Outcome.PASS
    assert report.exit_code == ExitCode.SUCCESS


async def test_without_retest_cached_failure_is_reported_not_rerun() -> None:
    store = FakeStore()
    store.verdicts[("default", "t1")] = Verdict("default", "t1", Outcome.FAIL)
    executor = FakeExecutor()

    report = await _runner(store=store, executor=executor, trees={"c1": "t1"}).run(
        ["c1"], [_definition()]
    )

    assert executor.calls == []
    assert report.exit_code == ExitCode.TESTS_FAILED
    assert store.summaries["c1"] == {"default": "Fail"}


async def test_fail_fast_stops_before_later_commits() -> None:
    store = FakeStore()
    executor = FakeExecutor({("c2", "default"): 1})
    trees = {"c1": "t1", "c2": "t2", "c3": "t3"}

    report = await _runner(store=store, executor=executor, trees=trees).run(
        ["c1", "c2", "c3"], [_definition()]
    )

    assert [item.commit for item in report.commits] == ["c1", "c2"]
    assert report.stopped_early
    assert ("c3", "default") not in executor.calls
    assert "c3" not in store.summaries
    assert store.summaries["c2"] == {"default": "Fail"}
    assert report.exit_code == ExitCode.TESTS_FAILED


async def test_keep_going_processes_every_commit() -> None:
    store = FakeStore()
    executor = FakeExecutor({("c2", "default"): 1})
    trees = {"c1": "t1", "c2": "t2", "c3": "t3"}

    report = await _runner(store=store, executor=executor, trees=trees, keep_going=True).run(
        ["c1", "c2", "c3"], [_definition()]
    )

    assert [item.commit for item in report.commits] == ["c1", "c2", "c3"]
    assert not report.stopped_early
    assert sorted(executor.calls) == [("c1", "default"), ("c2", "default"), ("c3", "default")]
    assert set(store.summaries) == {"c1", "c2", "c3"}
    assert report.exit_code == ExitCode.TESTS_FAILED


async def test_dry_run_never_provisions_executes_or_writes() -> None:
    store = FakeStore()
    store.verdicts[("default", "t1")] = Verdict("default", "t1", Outcome.FAIL)
    provisioner = FakeProvisioner()
    executor = FakeExecutor()

    report = await _runner(
        store=store,
        provisioner=provisioner,
        executor=executor,
        trees={"c1": "t1", "c2": "t2"},
        dry_run=True,
    ).run(["c1", "c2"], [_definition()])

    assert provisioner.created == []
    assert provisioner.pruned == 0
    assert executor.calls == []
    assert store.put_calls == 0
    assert store.summary_writes == []
    known, unknown = report.jobs
    assert known.verdict is not None and known.verdict.outcome is Outcome.FAIL
    assert unknown.verdict is None
    assert unknown.summary_marker == "Unknown"
    assert report.exit_code == ExitCode.SUCCESS
    assert not report.stopped_early


async def test_dry_run_with_retest_reports_cached_failure_as_unknown() -> None:
    store = FakeStore()
    store.verdicts[("default", "t1")] = Verdict("default", "t1", Outcome.FAIL)

    report = await _runner(store=store, trees={"c1": "t1"}, dry_run=True, retest=True).run(
        ["c1"], [_definition()]
    )

    assert report.jobs[0].verdict is None
    assert store.put_calls == 0


async def test_many_tests_on_one_commit_never_share_a_worktree() -> None:
    store = FakeStore()
    provisioner = FakeProvisioner()
    executor = FakeExecutor(delay=0.01)
    tests = [_definition(f"check-{index}") for index in range(6)]

    report = await _runner(
        store=store, provisioner=provisioner, executor=executor, trees={"c1": "t1"}, jobs=6
    ).run(["c1"], tests)

    assert provisioner.collisions == []
    assert len(set(provisioner.created)) == 6
    assert sorted(provisioner.destroyed) == sorted(provisioner.created)
    assert provisioner.active == set()
    assert len(store.verdicts) == 6
    assert len(store.summaries["c1"]) == 6
    assert store.summary_writes == ["c1"]
    assert executor.peak > 1
    assert report.exit_code == ExitCode.SUCCESS


async def test_concurrency_cap_is_respected() -> None:
    executor = FakeExecutor(delay=0.01)
    tests = [_definition(f"check-{index}") for index in range(5)]

    await _runner(
        store=FakeStore(),
        executor=executor,
        trees={"c1": "t1", "c2": "t2"},
        keep_going=True,
        jobs=2,
    ).run(["c1", "c2"], tests)

    assert len(executor.calls) == 10
    assert executor.peak <= 2


async def test_in_place_provisioner_forces_serial_execution() -> None:
    executor = FakeExecutor(delay=0.01)
    runner = _runner(
        store=FakeStore(),
        provisioner=FakeProvisioner(isolated=False),
        executor=executor,
        trees={"c1": "t1"},
        jobs=8,
    )

    await runner.run(["c1"], [_definition("a"), _definition("b"), _definition("c")])

    assert runner.concurrency == 1
    assert executor.peak == 1


async def test_forget_removes_verdict_without_running() -> None:
    store = FakeStore()
    store.verdicts[("default", "t1")] = Verdict("default", "t1", Outcome.PASS)
    provisioner = FakeProvisioner()
    executor = FakeExecutor()

    report = await _runner(
        store=store,
        provisioner=provisioner,
        executor=executor,
        trees={"c1": "t1"},
        forget=True,
    ).run(["c1"], [_definition()])

    assert ("default", "t1") not in store.verdicts
    assert executor.calls == []
    assert provisioner.created == []
    assert store.summary_writes == []
    job = report.jobs[0]
    assert job.state is JobState.SKIPPED
    assert job.forgotten
    assert job.verdict is None
    assert report.exit_code == ExitCode.SUCCESS


@pytest.mark.parametrize(
    "flags",
    [
        {"force": True, "forget": True},
        {"force": True, "dry_run": True},
        {"forget": True, "retest": True},
        {"forget": True, "dry_run": True},
    ],
)
async def test_conflicting_flags_abort_before_any_job(flags: dict[str, bool]) -> None:
    store = FakeStore()
    provisioner = FakeProvisioner()

    with pytest.raises(ConflictError):
        await _runner(store=store, provisioner=provisioner, trees={"c1": "t1"}, **flags).run(
            ["c1"], [_definition()]
        )

    assert store.get_calls == 0
    assert provisioner.created == []


def test_retest_with_dry_run_is_allowed() -> None:
    RunOptions(retest=True, dry_run=True).validate()


async def test_provision_error_is_scoped_to_the_job() -> None:
    store = FakeStore()
    provisioner = FakeProvisioner(failing={"c2"})

    report = await _runner(
        store=store,
        provisioner=provisioner,
        trees={"c1": "t1", "c2": "t2", "c3": "t3"},
        keep_going=True,
    ).run(["c1", "c2", "c3"], [_definition()])

    errored = report.commits[1].jobs[0]
    assert errored.state is JobState.ERRORED
    assert isinstance(errored.error, ProvisionError)
    assert errored.error.commit == "c2"
    assert errored.error.test == "default"
    assert "[default @ c2]" in str(errored.error)
    assert ("default", "t2") not in store.verdicts
    assert store.summaries["c2"] == {"default": "Error"}
    assert store.summaries["c3"] == {"default": "Pass"}
    assert _BASE / "c2" / "default" in provisioner.destroyed
    assert report.exit_code == ExitCode.INFRASTRUCTURE_ERROR


async def test_infrastructure_error_stops_fail_fast_run() -> None:
    report = await _runner(
        store=FakeStore(),
        provisioner=FakeProvisioner(failing={"c1"}),
        trees={"c1": "t1", "c2": "t2"},
    ).run(["c1", "c2"], [_definition()])

    assert report.stopped_early
    assert [item.commit for item in report.commits] == ["c1"]


async def test_execution_error_is_recorded_on_the_job() -> None:
    store = FakeStore()
    provisioner = FakeProvisioner()
    executor = FakeExecutor(unlaunchable={"broken"})

    report = await _runner(
        store=store, provisioner=provisioner, executor=executor, trees={"c1": "t1"}
    ).run(["c1"], [_definition("broken"), _definition("fine")])

    by_name = {job.test_name: job for job in report.jobs}
    assert by_name["broken"].state is JobState.ERRORED
    assert isinstance(by_name["broken"].error, ExecutionError)
    assert not by_name["broken"].executed
    assert by_name["fine"].state is JobState.DONE
    assert store.summaries["c1"] == {"broken": "Error", "fine": "Pass"}
    assert provisioner.active == set()


async def test_store_failure_leaves_no_verdict() -> None:
    store = FakeStore()
    store.fail_puts = True

    report = await _runner(store=store, trees={"c1": "t1"}).run(["c1"], [_definition()])

    job = report.jobs[0]
    assert job.state is JobState.ERRORED
    assert isinstance(job.error, StoreError)
    assert job.verdict is None
    assert report.exit_code == ExitCode.INFRASTRUCTURE_ERROR


async def test_duplicate_commits_are_scheduled_once() -> None:
    executor = FakeExecutor()

    report = await _runner(store=FakeStore(), executor=executor, trees={"c1": "t1"}).run(
        ["c1", "c1"], [_definition()]
    )

    assert len(report.commits) == 1
    assert executor.calls == [("c1", "default")]


async def test_run_prunes_and_closes_provisioner() -> None:
    provisioner = FakeProvisioner()

    await _runner(store=FakeStore(), provisioner=provisioner, trees={"c1": "t1"}).run(
        ["c1"], [_definition()]
    )

    assert provisioner.pruned == 1
    assert provisioner.closed == 1


def test_run_sync_wraps_the_event_loop() -> None:
    store = FakeStore()
    report = _runner(store=store, trees={"c1": "t1"}).run_sync(["c1"], [_definition()])

    assert report.exit_code == ExitCode.SUCCESS
    assert ("default", "t1") in store.verdicts
