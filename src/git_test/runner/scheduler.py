"""
Run tests across commits, reusing cached verdicts by tree.

Each ``(commit, test)`` pair becomes a :class:`~git_test.domain.models.Job`
that walks the state machine ``pending -> provisioning -> running ->
recording -> done``, or ends early as ``skipped`` (cache hit, dry run,
forget) or ``errored`` (job-scoped infrastructure failure).

Jobs are drained through a :class:`~git_test.utils.concurrency.QueueWorkerPool`.
A single consumer loop collects finished jobs and writes a commit's summary
once every job of that commit is terminal, so summaries are never partial
and never written twice.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import aclosing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from git_test.domain.models import (
    CommitReport,
    Job,
    JobState,
    Outcome,
    RunReport,
    Verdict,
)
from git_test.errors import ConfigurationError, ConflictError, JobError
from git_test.execution import CommandSpec
from git_test.git.resolver import dedupe_preserving_order
from git_test.observability.logging import default_logger
from git_test.utils.concurrency import CancellationToken, QueueWorkerPool, default_concurrency

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from git_test.domain.models import TestDefinition
    from git_test.execution import CommandExecutor
    from git_test.git.resolver import CommitResolver
    from git_test.store.result_store import ResultStore
    from git_test.worktree.provisioner import Provisioner

_CONFLICTING_FLAGS: tuple[tuple[str, str], ...] = (
    ("force", "forget"),
    ("force", "dry_run"),
    ("forget", "retest"),
    ("forget", "dry_run"),
)


@dataclass(frozen=True, slots=True)
class RunOptions:
    """Policy flags for one ``run`` invocation."""

    force: bool = False
    forget: bool = False
    retest: bool = False
    keep_going: bool = False
    dry_run: bool = False
    jobs: int | None = None

    def validate(self) -> None:
        for first, second in _CONFLICTING_FLAGS:
            if getattr(self, first) and getattr(self, second):
                raise ConflictError(
                    f"--{_flag(first)} cannot be combined with --{_flag(second)}"
                )
        if self.jobs is not None and self.jobs <= 0:
            raise ConfigurationError("run.jobs: must be a positive integer")


class TestRunner:
    """Schedule, execute and record test jobs."""

    __test__ = False

    def __init__(
        self,
        *,
        store: ResultStore,
        provisioner: Provisioner,
        executor: CommandExecutor,
        resolver: CommitResolver,
        options: RunOptions | None = None,
        timeout_seconds: float | None = None,
        logger: Any | None = None,
        on_job_finished: Callable[[Job], None] | None = None,
    ) -> None:
        self._store = store
        self._provisioner = provisioner
        self._executor = executor
        self._resolver = resolver
        self._options = options if options is not None else RunOptions()
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else default_logger(__name__)
        self._on_job_finished = on_job_finished
        self._cancel_token = CancellationToken()

    @property
    def options(self) -> RunOptions:
        return self._options

    @property
    def concurrency(self) -> int:
        if not self._provisioner.isolated:
            return 1
        return self._options.jobs if self._options.jobs is not None else default_concurrency()

    def cancel(self) -> None:
        self._cancel_token.cancel()

    def run_sync(self, commits: Sequence[str], tests: Sequence[TestDefinition]) -> RunReport:
        return asyncio.run(self.run(commits, tests))

    async def run(self, commits: Sequence[str], tests: Sequence[TestDefinition]) -> RunReport:
        options = self._options
        options.validate()
        if not tests:
            raise ConfigurationError("no tests selected")

        commit_reports: list[CommitReport] = []
        for commit in dedupe_preserving_order(commits):
            tree = await asyncio.to_thread(self._resolver.resolve_tree, commit)
            commit_reports.append(
                CommitReport(
                    commit=commit,
                    tree=tree,
                    jobs=[Job(commit=commit, tree=tree, test=test) for test in tests],
                )
            )

        report = RunReport(dry_run=options.dry_run)
        if options.keep_going or options.dry_run:
            batches = [commit_reports] if commit_reports else []
        else:
            batches = [[commit_report] for commit_report in commit_reports]

        self._logger.debug(
            "run starting",
            commits=len(commit_reports),
            tests=len(tests),
            concurrency=self.concurrency,
        )
        if not options.dry_run and not options.forget:
            await asyncio.to_thread(self._provisioner.prune)

        try:
            for index, batch in enumerate(batches):
                report.commits.extend(batch)
                await self._run_batch(batch)
                remaining = len(batches) - index - 1
                if not options.keep_going and remaining and any(
                    item.failed or item.errored for item in batch
                ):
                    report.stopped_early = True
                    self._logger.info(
                        "stopping after failing commit",
                        commit=batch[-1].commit[:12],
                        skipped_commits=remaining,
                    )
                    break
        finally:
            await asyncio.shield(asyncio.to_thread(self._provisioner.close))

        return report

    async def _run_batch(self, batch: Sequence[CommitReport]) -> None:
        by_commit = {commit_report.commit: commit_report for commit_report in batch}
        # one job per (test, tree) reaches the pool; the rest share its outcome
        leaders: dict[tuple[str, str], Job] = {}
        followers: defaultdict[tuple[str, str], list[Job]] = defaultdict(list)
        for commit_report in batch:
            for job in commit_report.jobs:
                key = (job.test_name, job.tree)
                if key in leaders:
                    followers[key].append(job)
                else:
                    leaders[key] = job

        pool: QueueWorkerPool[Job, Job] = QueueWorkerPool(
            self._process_job,
            max_concurrency=self.concurrency,
            cancel_token=self._cancel_token,
        )
        async with aclosing(pool.map(leaders.values())) as finished:
            async for leader in finished:
                shared = followers.pop((leader.test_name, leader.tree), [])
                for job in [leader, *self._share_outcome(leader, shared)]:
                    if self._on_job_finished is not None:
                        self._on_job_finished(job)
                    commit_report = by_commit[job.commit]
                    if commit_report.complete and not commit_report.summary_written:
                        await self._write_summary(commit_report)

    def _share_outcome(self, leader: Job, jobs: Sequence[Job]) -> Sequence[Job]:
        """Settle jobs whose tree was already handled by ``leader`` in this batch."""

        for job in jobs:
            if leader.error is not None:
                source = leader.commit[:12]
                job.fail_with(
                    JobError(f"run on {source} with the same tree errored: {leader.error.detail}")
                )
                continue
            job.verdict = leader.verdict
            job.forgotten = leader.forgotten
            job.advance(JobState.SKIPPED)
            self._logger.debug(
                "outcome shared with identical tree",
                commit=job.commit[:12],
                test=job.test_name,
                source=leader.commit[:12],
            )
        return jobs

    async def _process_job(self, job: Job) -> Job:
        options = self._options
        log = self._logger.bind(commit=job.commit[:12], test=job.test_name)
        try:
            if options.forget:
                removed = await asyncio.to_thread(self._store.forget, job.test_name, job.tree)
                job.forgotten = True
                job.advance(JobState.SKIPPED)
                log.debug("verdict forgotten", removed=removed)
                return job

            if not options.force:
                cached = await asyncio.to_thread(self._store.get, job.test_name, job.tree)
                if cached is not None and not (options.retest and not cached.passed):
                    job.verdict = cached
                    job.advance(JobState.SKIPPED)
                    log.debug("cached verdict reused", outcome=str(cached.outcome))
                    return job
                if options.dry_run:
                    job.advance(JobState.SKIPPED)
                    log.debug("no usable cached verdict")
                    return job

            await self._execute(job, log)
        except JobError as exc:
            job.fail_with(exc)
            log.error("job errored", kind=exc.kind, error=exc.detail)
        return job

    async def _execute(self, job: Job, log: Any) -> None:
        path = self._provisioner.path_for(job.commit, job.test_name)
        job.advance(JobState.PROVISIONING)
        try:
            await asyncio.to_thread(self._provisioner.create, job.commit, path)
            job.advance(JobState.RUNNING)
            spec = CommandSpec.shell(
                job.test.command,
                cwd=path,
                timeout_seconds=self._timeout_seconds,
            )
            result = await self._executor.run(spec)
            job.executed = True
        finally:
            await asyncio.shield(asyncio.to_thread(self._provisioner.destroy, path))

        outcome = Outcome.FAIL if result.timed_out else Outcome.from_exit_code(result.exit_code)
        verdict = Verdict(
            test=job.test_name,
            tree=job.tree,
            outcome=outcome,
            stdout=result.stdout,
            stderr=result.stderr,
        )
        job.advance(JobState.RECORDING)
        await asyncio.to_thread(self._store.put, verdict)
        job.verdict = verdict
        job.advance(JobState.DONE)
        log.info(
            "test finished",
            outcome=str(outcome),
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            duration_ms=result.duration_ms,
        )

    async def _write_summary(self, commit_report: CommitReport) -> None:
        commit_report.summary_written = True
        if self._options.dry_run or any(job.forgotten for job in commit_report.jobs):
            return
        try:
            changed = await asyncio.to_thread(
                self._store.put_summary, commit_report.commit, commit_report.summary_entries()
            )
        except JobError as exc:
            commit_report.summary_error = exc
            self._logger.error(
                "summary not written", commit=commit_report.commit[:12], error=str(exc)
            )
            return
        self._logger.debug("summary recorded", commit=commit_report.commit[:12], changed=changed)


def _flag(name: str) -> str:
    return name.replace("_", "-")


__all__ = ["RunOptions", "TestRunner"]
