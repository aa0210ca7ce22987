"""
Content-addressed verdict cache backed by git notes.

Layout
- One note per ``(test, tree)`` in ``<notes_prefix>/<test>``, attached to the
  tree object, so every commit with identical content shares the verdict.
- One summary note per commit in ``summary_ref``, listing ``"<test>: <marker>"``
  for each test run against that commit.

Writes are unconditional overwrites. Equal inputs always produce equal
verdicts, so a duplicated write from a race is harmless. Updates to one notes
ref are serialised because git notes commits to a single ref.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Final

import yaml

from git_test.constants import (
    DEFAULT_MAX_OUTPUT_CHARS,
    DEFAULT_NOTES_PREFIX,
    DEFAULT_SUMMARY_REF,
)
from git_test.domain.models import Outcome, Verdict, validate_test_name
from git_test.errors import GitCommandError, StoreError
from git_test.observability.logging import default_logger

if TYPE_CHECKING:
    from collections.abc import Mapping

    from git_test.git.repository import GitRepository

_LEGACY_MARKERS: Final[dict[str, Outcome]] = {
    "pass": Outcome.PASS,
    "good": Outcome.PASS,
    "✓": Outcome.PASS,
    "fail": Outcome.FAIL,
    "bad": Outcome.FAIL,
    "✗": Outcome.FAIL,
}


class ResultStore:
    """Persist and look up verdicts keyed by ``(test name, tree id)``."""

    def __init__(
        self,
        repo: GitRepository,
        *,
        notes_prefix: str = DEFAULT_NOTES_PREFIX,
        summary_ref: str = DEFAULT_SUMMARY_REF,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
        logger: Any | None = None,
    ) -> None:
        if max_output_chars < 0:
            raise ValueError("max_output_chars must be >= 0")
        self._repo = repo
        self._notes_prefix = notes_prefix.rstrip("/")
        self._summary_ref = summary_ref
        self._max_output_chars = max_output_chars
        self._logger = logger if logger is not None else default_logger(__name__)
        self._ref_locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def notes_ref(self, test: str) -> str:
        return f"{self._notes_prefix}/{validate_test_name(test)}"

    @property
    def summary_ref(self) -> str:
        return self._summary_ref

    def get(self, test: str, tree: str) -> Verdict | None:
        body = self._repo.notes_show(self.notes_ref(test), tree)
        if body is None:
            return None
        verdict = parse_verdict_note(body, test=test, tree=tree)
        if verdict is None:
            self._logger.warning("ignoring unreadable verdict note", test=test, tree=tree)
        return verdict

    def put(self, verdict: Verdict) -> None:
        body = render_verdict_note(verdict, max_output_chars=self._max_output_chars)
        ref = self.notes_ref(verdict.test)
        try:
            with self._lock_for(ref):
                self._repo.notes_add(ref, verdict.tree, body)
        except GitCommandError as exc:
            raise StoreError(
                f"failed to record verdict for tree {verdict.tree[:12]}: {exc}",
                test=verdict.test,
            ) from exc
        self._logger.debug(
            "verdict recorded", test=verdict.test, tree=verdict.tree, outcome=str(verdict.outcome)
        )

    def forget(self, test: str, tree: str) -> bool:
        ref = self.notes_ref(test)
        try:
            with self._lock_for(ref):
                return self._repo.notes_remove(ref, tree)
        except GitCommandError as exc:
            raise StoreError(f"failed to forget verdict for tree {tree[:12]}: {exc}", test=test) from exc

    def forget_all(self, test: str) -> bool:
        ref = self.notes_ref(test)
        try:
            with self._lock_for(ref):
                return self._repo.delete_ref(ref)
        except GitCommandError as exc:
            raise StoreError(f"failed to delete {ref}: {exc}", test=test) from exc

    def get_summary(self, commit: str) -> str | None:
        return self._repo.notes_show(self._summary_ref, commit)

    def put_summary(self, commit: str, outcomes: Mapping[str, str]) -> bool:
        """Write the consolidated summary for ``commit``; return ``False`` if unchanged."""

        body = render_summary(outcomes)
        existing = self.get_summary(commit)
        if existing is not None and existing.strip() == body.strip():
            return False
        try:
            with self._lock_for(self._summary_ref):
                self._repo.notes_add(self._summary_ref, commit, body)
        except GitCommandError as exc:
            raise StoreError(
                f"failed to write summary for commit {commit[:12]}: {exc}", commit=commit
            ) from exc
        return True

    def _lock_for(self, ref: str) -> threading.Lock:
        with self._locks_guard:
            return self._ref_locks[ref]


def render_verdict_note(verdict: Verdict, *, max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS) -> str:
    payload = {
        "result": verdict.outcome.value,
        "recorded_at": verdict.recorded_at.astimezone(UTC).isoformat(),
        "stdout": _tail(verdict.stdout, max_output_chars),
        "stderr": _tail(verdict.stderr, max_output_chars),
    }
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)


def parse_verdict_note(body: str, *, test: str, tree: str) -> Verdict | None:
    try:
        payload = yaml.safe_load(body)
    except yaml.YAMLError:
        payload = None

    if isinstance(payload, dict):
        outcome = _LEGACY_MARKERS.get(str(payload.get("result", "")).strip().lower())
        if outcome is None:
            return None
        return Verdict(
            test=test,
            tree=tree,
            outcome=outcome,
            stdout=str(payload.get("stdout") or ""),
            stderr=str(payload.get("stderr") or ""),
            recorded_at=_parse_timestamp(payload.get("recorded_at")),
        )

    first_line = body.strip().splitlines()[0] if body.strip() else ""
    outcome = _LEGACY_MARKERS.get(first_line.strip().lower())
    if outcome is None:
        return None
    return Verdict(test=test, tree=tree, outcome=outcome)


def render_summary(outcomes: Mapping[str, str]) -> str:
    return "".join(f"{name}: {outcomes[name]}\n" for name in sorted(outcomes))


def _parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return datetime.fromtimestamp(0, tz=UTC)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    return datetime.fromtimestamp(0, tz=UTC)


def _tail(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    if max_chars == 0:
        return ""
    return text[-max_chars:]


__all__ = [
    "ResultStore",
    "parse_verdict_note",
    "render_summary",
    "render_verdict_note",
]
