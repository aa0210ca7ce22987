"""
Runtime settings schema.

Settings are assembled as a nested mapping (defaults, file, env, CLI) and
validated in one pass into an immutable :class:`Settings` value. Every issue
is reported with its dotted field path.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from git_test.constants import (
    DEFAULT_MAX_OUTPUT_CHARS,
    DEFAULT_NOTES_PREFIX,
    DEFAULT_SUMMARY_REF,
    DEFAULT_WORKTREE_DIR,
)
from git_test.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence

DEFAULT_CONFIG: Final[dict[str, dict[str, Any]]] = {
    "run": {
        "jobs": None,
        "worktree_dir": DEFAULT_WORKTREE_DIR.as_posix(),
        "isolate": True,
        "timeout_seconds": None,
    },
    "store": {
        "notes_prefix": DEFAULT_NOTES_PREFIX,
        "summary_ref": DEFAULT_SUMMARY_REF,
        "max_output_chars": DEFAULT_MAX_OUTPUT_CHARS,
    },
}


@dataclass(frozen=True, slots=True)
class RunSettings:
    jobs: int | None = None
    worktree_dir: str = DEFAULT_WORKTREE_DIR.as_posix()
    isolate: bool = True
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class StoreSettings:
    notes_prefix: str = DEFAULT_NOTES_PREFIX
    summary_ref: str = DEFAULT_SUMMARY_REF
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS


@dataclass(frozen=True, slots=True)
class Settings:
    """Effective configuration for one invocation."""

    run: RunSettings = RunSettings()
    store: StoreSettings = StoreSettings()

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            "run": {
                "jobs": self.run.jobs,
                "worktree_dir": self.run.worktree_dir,
                "isolate": self.run.isolate,
                "timeout_seconds": self.run.timeout_seconds,
            },
            "store": {
                "notes_prefix": self.store.notes_prefix,
                "summary_ref": self.store.summary_ref,
                "max_output_chars": self.store.max_output_chars,
            },
        }


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ConfigurationError):
    """Raised when one or more settings are invalid."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "; ".join(f"{item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid configuration: {rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> dict[str, dict[str, Any]]:
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(payload: Mapping[str, object]) -> Settings:
    issues = _IssueCollector()
    for key in sorted(set(payload) - set(DEFAULT_CONFIG)):
        issues.add(key, "unknown section")

    run = _section(payload, "run", issues)
    store = _section(payload, "store", issues)
    _reject_unknown_keys(run, DEFAULT_CONFIG["run"], "run", issues)
    _reject_unknown_keys(store, DEFAULT_CONFIG["store"], "store", issues)

    jobs = run.get("jobs")
    if jobs is not None:
        jobs = _as_int(jobs, "run.jobs", issues, minimum=1)
    worktree_dir = _as_str(run.get("worktree_dir"), "run.worktree_dir", issues)
    isolate = _as_bool(run.get("isolate"), "run.isolate", issues)
    timeout = run.get("timeout_seconds")
    if timeout is not None:
        timeout = _as_positive_float(timeout, "run.timeout_seconds", issues)

    notes_prefix = _as_str(store.get("notes_prefix"), "store.notes_prefix", issues)
    summary_ref = _as_str(store.get("summary_ref"), "store.summary_ref", issues)
    for path, ref in (("store.notes_prefix", notes_prefix), ("store.summary_ref", summary_ref)):
        if ref is not None and not ref.startswith("refs/"):
            issues.add(path, "must start with 'refs/'")
    max_output = _as_int(store.get("max_output_chars"), "store.max_output_chars", issues, minimum=0)

    if issues.has_issues:
        raise ConfigValidationError(issues.items())

    return Settings(
        run=RunSettings(
            jobs=jobs,
            worktree_dir=worktree_dir or DEFAULT_WORKTREE_DIR.as_posix(),
            isolate=bool(isolate),
            timeout_seconds=timeout,
        ),
        store=StoreSettings(
            notes_prefix=notes_prefix or DEFAULT_NOTES_PREFIX,
            summary_ref=summary_ref or DEFAULT_SUMMARY_REF,
            max_output_chars=max_output if max_output is not None else DEFAULT_MAX_OUTPUT_CHARS,
        ),
    )


def _section(payload: Mapping[str, object], name: str, issues: _IssueCollector) -> Mapping[str, object]:
    value = payload.get(name, {})
    if not isinstance(value, Mapping):
        issues.add(name, "must be a table")
        return {}
    return value


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(set(payload) - set(allowed)):
        issues.add(f"{path}.{key}", "unknown key")


def _as_int(value: object, path: str, issues: _IssueCollector, *, minimum: int) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, "must be an integer")
        return None
    if value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        issues.add(path, "must be a number")
        return None
    if value <= 0:
        issues.add(path, "must be > 0")
        return None
    return float(value)


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if not isinstance(value, bool):
        issues.add(path, "must be a boolean")
        return None
    return value


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str) or not value.strip():
        issues.add(path, "must be a non-empty string")
        return None
    return value.strip()


__all__ = [
    "DEFAULT_CONFIG",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "RunSettings",
    "Settings",
    "StoreSettings",
    "default_config",
    "merge_config",
    "validate_config",
]
