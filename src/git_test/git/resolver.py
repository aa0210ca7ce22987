"""Resolve user-supplied revision expressions into concrete commits and trees."""

from __future__ import annotations

import sys
from typing import IO, TYPE_CHECKING

from git_test.errors import GitCommandError, ResolutionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from git_test.git.repository import GitRepository

_RANGE_MARKER = ".."


class CommitResolver:
    """Expand refs and ranges into an ordered, de-duplicated commit list."""

    def __init__(self, repo: GitRepository) -> None:
        self._repo = repo

    def resolve_commits(
        self,
        expressions: Sequence[str],
        *,
        allow_stdin: bool = False,
        stdin: IO[str] | None = None,
    ) -> list[str]:
        """Return commit ids in request order, oldest first within each range.

        ``HEAD`` is used when no expression is given and stdin is not read.
        """

        requested = [expr.strip() for expr in expressions if expr.strip()]
        if allow_stdin:
            source = stdin if stdin is not None else sys.stdin
            requested.extend(line.strip() for line in source if line.strip())
        if not requested and not allow_stdin:
            requested = ["HEAD"]

        commits: list[str] = []
        for expression in requested:
            commits.extend(self._expand(expression))
        return dedupe_preserving_order(commits)

    def resolve_tree(self, commit: str) -> str:
        try:
            return self._repo.rev_parse(f"{commit}^{{tree}}")
        except GitCommandError as exc:
            raise ResolutionError(f"cannot resolve tree of {commit!r}") from exc

    def _expand(self, expression: str) -> list[str]:
        if expression.startswith("-"):
            raise ResolutionError(f"invalid revision expression: {expression!r}")
        try:
            if _RANGE_MARKER in expression:
                return self._repo.rev_list("--reverse", expression, "--")
            return [self._repo.rev_parse(f"{expression}^{{commit}}")]
        except GitCommandError as exc:
            raise ResolutionError(f"cannot resolve revision expression {expression!r}") from exc


def dedupe_preserving_order(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        ordered.append(item)
    return ordered


__all__ = ["CommitResolver", "dedupe_preserving_order"]
