"""Command-line interface router for git-test.

File: src/git_test/ui/cli.py

Purpose
- Build the argparse tree for ``add``, ``list``, ``remove``, ``run``, ``results``
  and ``forget-results``.
- Wire parsed options into settings, collaborators and the renderer.

Functional requirements
- ``--test`` and ``--all`` are mutually exclusive.
- ``range`` is accepted as an alias of ``run``.
- Handlers return an exit code; errors propagate to ``main``.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from git_test import __version__
from git_test.config import Settings, load_settings
from git_test.constants import DEFAULT_TEST_NAME
from git_test.errors import ConfigurationError
from git_test.execution import LocalSubprocessExecutor
from git_test.git import CommitResolver, GitRepository, TestRegistry
from git_test.observability.logging import ColorMode, OutputConfig, build_logger
from git_test.runner import RunOptions, TestRunner
from git_test.store import ResultStore
from git_test.ui.render import CLIRenderer, create_renderer
from git_test.worktree import InPlaceProvisioner, WorktreeProvisioner

if TYPE_CHECKING:
    from collections.abc import Sequence

    from git_test.domain.models import TestDefinition
    from git_test.worktree import Provisioner


@dataclass(frozen=True, slots=True)
class _Context:
    repo: GitRepository
    settings: Settings
    output: OutputConfig
    logger: Any
    renderer: CLIRenderer

    def store(self) -> ResultStore:
        return ResultStore(
            self.repo,
            notes_prefix=self.settings.store.notes_prefix,
            summary_ref=self.settings.store.summary_ref,
            max_output_chars=self.settings.store.max_output_chars,
            logger=self.logger,
        )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="git-test",
        description=(
            "Run tests within a Git project and remember the test results.\n\n"
            "Results are keyed by tree, so a commit whose contents were already\n"
            "tested is not tested again.\n\n"
            "Common workflows:\n"
            "  git-test add 'make -j8 test'      Define the 'default' test\n"
            "  git-test run main..feature       Test every commit on a branch\n"
            "  git-test results HEAD~5..HEAD    Show recorded results\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--repo-root",
        "-C",
        default=".",
        help="Run as if started in this directory (default: current directory).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Generate more verbose output (may be repeated).",
    )
    common.add_argument(
        "--quiet",
        "-q",
        action="count",
        default=0,
        help="Generate less verbose output (may be repeated).",
    )
    common.add_argument(
        "--color",
        choices=[mode.value for mode in ColorMode],
        default=ColorMode.AUTO.value,
        help="Colorize output (default: auto; NO_COLOR is honoured).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # add -----------------------------------------------------------------
    add_parser = subparsers.add_parser("add", parents=[common], help="Define a new test")
    _add_test_option(add_parser)
    retention = add_parser.add_mutually_exclusive_group()
    retention.add_argument(
        "--forget",
        action="store_true",
        help="Forget any results stored for the previous command.",
    )
    retention.add_argument(
        "--keep",
        action="store_true",
        help="Keep any results stored for the previous command (default).",
    )
    add_parser.add_argument("test_command", metavar="COMMAND", help="Shell command to run.")
    add_parser.set_defaults(handler=_cmd_add)

    # list ----------------------------------------------------------------
    list_parser = subparsers.add_parser(
        "list", parents=[common], help="List the tests that are currently defined"
    )
    list_parser.set_defaults(handler=_cmd_list)

    # remove --------------------------------------------------------------
    remove_parser = subparsers.add_parser(
        "remove",
        parents=[common],
        help="Remove a test definition and all of its stored results",
    )
    _add_test_option(remove_parser)
    remove_parser.set_defaults(handler=_cmd_remove)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        aliases=["range"],
        parents=[common],
        help="Run tests against one or more commits",
        description=(
            "Run tests against commits, reusing stored results for identical trees.\n\n"
            "Examples:\n"
            "  git-test run                      Test HEAD\n"
            "  git-test run --all -j4 main..     Run every test on new commits\n"
            "  git-test run --retest v1.0..v1.1  Retry commits that failed before\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    selection = run_parser.add_mutually_exclusive_group()
    selection.add_argument(
        "--test",
        "-t",
        default=None,
        help=f"Name of the test to run (default: {DEFAULT_TEST_NAME}).",
    )
    selection.add_argument("--all", action="store_true", help="Run every defined test.")
    run_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Ignore stored results, test again and overwrite them.",
    )
    run_parser.add_argument(
        "--forget",
        action="store_true",
        help="Forget stored results for the given commits without testing them.",
    )
    run_parser.add_argument(
        "--retest",
        action="store_true",
        help="Test again commits whose stored result is a failure.",
    )
    run_parser.add_argument(
        "--keep-going",
        "-k",
        action="store_true",
        help="Continue with the remaining commits after a failure.",
    )
    run_parser.add_argument(
        "--dry-run",
        "-n",
        action="store_true",
        help="Show known results without running any test.",
    )
    run_parser.add_argument(
        "--stdin",
        action="store_true",
        help="Read commits to test from standard input, one per line.",
    )
    checkout = run_parser.add_mutually_exclusive_group()
    checkout.add_argument(
        "--worktree",
        metavar="PATH",
        default=None,
        help="Directory holding temporary worktrees (default: .worktrees).",
    )
    checkout.add_argument(
        "--no-worktree",
        action="store_true",
        help="Test in the current working copy, one commit at a time.",
    )
    run_parser.add_argument(
        "--jobs",
        "-j",
        type=_positive_int,
        default=None,
        help="Maximum number of tests to run at once (default: CPU count).",
    )
    run_parser.add_argument("commits", nargs="*", help="Commits or ranges of commits to test.")
    run_parser.set_defaults(handler=_cmd_run)

    # results -------------------------------------------------------------
    results_parser = subparsers.add_parser(
        "results",
        parents=[common],
        help="Show stored test results for the specified commits",
    )
    _add_test_option(results_parser)
    results_parser.add_argument(
        "--stdin",
        action="store_true",
        help="Read commits from standard input, one per line.",
    )
    results_parser.add_argument("commits", nargs="*", help="Commits or ranges of commits.")
    results_parser.set_defaults(handler=_cmd_results)

    # forget-results ------------------------------------------------------
    forget_parser = subparsers.add_parser(
        "forget-results",
        parents=[common],
        help="Permanently forget stored results for a test",
    )
    _add_test_option(forget_parser)
    forget_parser.set_defaults(handler=_cmd_forget_results)

    return parser


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    stdout: IO[str] | None = None,
    stdin: IO[str] | None = None,
) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2
    namespace.stdout_stream = stdout
    namespace.stdin_stream = stdin
    return int(handler(namespace))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_add(args: argparse.Namespace) -> int:
    ctx = _context(args)
    registry = TestRegistry(ctx.repo)
    previous = registry.define(args.test, args.test_command)
    if previous is None:
        ctx.logger.info("test defined", test=args.test, command=args.test_command)
        return 0

    ctx.logger.info(
        "test redefined", test=args.test, previous=previous.command, command=args.test_command
    )
    if args.forget:
        ctx.store().forget_all(args.test)
        ctx.logger.info("stored results forgotten", test=args.test)
    elif not args.keep and previous.command != args.test_command:
        ctx.renderer.warning(
            f"test '{args.test}' changed; stored results were kept "
            "(use --forget to discard them or --keep to silence this warning)"
        )
    return 0


def _cmd_list(args: argparse.Namespace) -> int:
    ctx = _context(args)
    ctx.renderer.tests(TestRegistry(ctx.repo).list())
    return 0


def _cmd_remove(args: argparse.Namespace) -> int:
    ctx = _context(args)
    registry = TestRegistry(ctx.repo)
    registry.get(args.test)
    ctx.store().forget_all(args.test)
    registry.remove(args.test)
    ctx.logger.info("test removed", test=args.test)
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    options = RunOptions(
        force=args.force,
        forget=args.forget,
        retest=args.retest,
        keep_going=args.keep_going,
        dry_run=args.dry_run,
        jobs=args.jobs,
    )
    options.validate()

    ctx = _context(
        args,
        cli_overrides={
            "run.jobs": args.jobs,
            "run.worktree_dir": args.worktree,
            "run.isolate": False if args.no_worktree else (True if args.worktree else None),
        },
    )
    options = replace(options, jobs=ctx.settings.run.jobs)

    tests = _selected_tests(TestRegistry(ctx.repo), name=args.test, run_all=args.all)
    commits = CommitResolver(ctx.repo).resolve_commits(
        args.commits, allow_stdin=args.stdin, stdin=args.stdin_stream
    )
    if not commits:
        ctx.renderer.warning("no commits to test")
        return 0

    runner = TestRunner(
        store=ctx.store(),
        provisioner=_provisioner(ctx),
        executor=LocalSubprocessExecutor(
            default_timeout_seconds=ctx.settings.run.timeout_seconds, logger=ctx.logger
        ),
        resolver=CommitResolver(ctx.repo),
        options=options,
        timeout_seconds=ctx.settings.run.timeout_seconds,
        logger=ctx.logger,
        on_job_finished=ctx.renderer.job,
    )
    report = runner.run_sync(commits, tests)
    ctx.renderer.run_summary(report)
    return report.exit_code


def _cmd_results(args: argparse.Namespace) -> int:
    ctx = _context(args)
    TestRegistry(ctx.repo).get(args.test)
    resolver = CommitResolver(ctx.repo)
    store = ctx.store()
    commits = resolver.resolve_commits(args.commits, allow_stdin=args.stdin, stdin=args.stdin_stream)
    for commit in commits:
        tree = resolver.resolve_tree(commit)
        ctx.renderer.result(commit, args.test, store.get(args.test, tree))
    return 0


def _cmd_forget_results(args: argparse.Namespace) -> int:
    ctx = _context(args)
    removed = ctx.store().forget_all(args.test)
    ctx.logger.info("stored results forgotten", test=args.test, existed=removed)
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _context(args: argparse.Namespace, *, cli_overrides: dict[str, object] | None = None) -> _Context:
    output = OutputConfig.from_counts(verbose=args.verbose, quiet=args.quiet, color=args.color)
    logger = build_logger(output)
    repo = GitRepository.discover(Path(args.repo_root), logger=logger)
    settings = load_settings(repo.root, cli_overrides=cli_overrides)
    renderer = create_renderer(output, stream=args.stdout_stream)
    return _Context(repo=repo, settings=settings, output=output, logger=logger, renderer=renderer)


def _selected_tests(registry: TestRegistry, *, name: str | None, run_all: bool) -> list[TestDefinition]:
    if not run_all:
        return [registry.get(name or DEFAULT_TEST_NAME)]
    tests = registry.list()
    if not tests:
        raise ConfigurationError("no tests are defined; use 'git-test add' first")
    return tests


def _provisioner(ctx: _Context) -> Provisioner:
    if not ctx.settings.run.isolate:
        return InPlaceProvisioner(ctx.repo, logger=ctx.logger)
    return WorktreeProvisioner(ctx.repo, ctx.settings.run.worktree_dir, logger=ctx.logger)


def _add_test_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--test",
        "-t",
        default=DEFAULT_TEST_NAME,
        help=f"Name of the test (default: {DEFAULT_TEST_NAME}).",
    )


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {raw!r}")
    return value


__all__ = ["build_parser", "run_cli"]
