"""Thin, deterministic wrapper around the ``git`` CLI.

File: src/git_test/git/repository.py

Purpose
- Run git subprocesses with a stable environment and captured output.
- Offer the handful of plumbing calls the store, resolver and provisioners use.

Functional requirements
- Every command and its output is logged at debug level.
- Non-zero exits raise ``GitCommandError`` unless the caller opts out.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from git_test.errors import GitCommandError, InvocationError
from git_test.observability.logging import default_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result for git invocations."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitRepository:
    """Git plumbing used by the resolver, registry, store and provisioner."""

    def __init__(
        self,
        root: Path | str,
        *,
        env_overrides: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self._env_overrides = dict(env_overrides or {})
        self._logger = logger if logger is not None else default_logger(__name__)

    @classmethod
    def discover(cls, start: Path | str, *, logger: Any | None = None) -> GitRepository:
        """Return the repository containing ``start`` (its top-level working directory)."""

        candidate = cls(start, logger=logger)
        result = candidate.run(["rev-parse", "--show-toplevel"], check=False)
        if not result.ok:
            raise InvocationError(f"not in a git repository: {Path(start).resolve()}")
        return cls(result.stdout.strip(), logger=logger)

    # -- revisions -------------------------------------------------------

    def rev_parse(self, ref: str, *, verify: bool = True) -> str:
        args = ["rev-parse", "--verify", "--quiet", ref] if verify else ["rev-parse", ref]
        return self.run(args).stdout.strip()

    def head_commit(self) -> str:
        return self.rev_parse("HEAD^{commit}")

    def symbolic_head(self) -> str | None:
        result = self.run(["symbolic-ref", "--quiet", "HEAD"], check=False)
        return result.stdout.strip() if result.ok else None

    def rev_list(self, *args: str) -> list[str]:
        output = self.run(["rev-list", *args]).stdout
        return [line.strip() for line in output.splitlines() if line.strip()]

    # -- config ----------------------------------------------------------

    def config_get(self, key: str) -> str | None:
        result = self.run(["config", "--get", key], check=False)
        if result.returncode == 1:
            return None
        if not result.ok:
            raise self._error(result)
        return result.stdout.rstrip("\n")

    def config_get_regexp(self, pattern: str) -> list[tuple[str, str]]:
        result = self.run(["config", "--null", "--get-regexp", pattern], check=False)
        if result.returncode == 1:
            return []
        if not result.ok:
            raise self._error(result)
        entries: list[tuple[str, str]] = []
        for entry in result.stdout.split("\0"):
            if not entry:
                continue
            key, _, value = entry.partition("\n")
            entries.append((key, value))
        return entries

    def config_set(self, key: str, value: str) -> None:
        self.run(["config", key, value])

    def config_remove_section(self, section: str) -> bool:
        return self.run(["config", "--remove-section", section], check=False).ok

    # -- notes -----------------------------------------------------------

    def notes_show(self, ref: str, obj: str) -> str | None:
        result = self.run(["notes", "--ref", ref, "show", obj], check=False)
        if not result.ok:
            return None
        return result.stdout

    def notes_add(self, ref: str, obj: str, message: str) -> None:
        self.run(["notes", "--ref", ref, "add", "-f", "-F", "-", obj], input_text=message)

    def notes_remove(self, ref: str, obj: str) -> bool:
        if self.notes_show(ref, obj) is None:
            return False
        self.run(["notes", "--ref", ref, "remove", obj])
        return True

    def delete_ref(self, ref: str) -> bool:
        if not self.run(["show-ref", "--verify", "--quiet", ref], check=False).ok:
            return False
        self.run(["update-ref", "-d", ref])
        return True

    # -- worktrees -------------------------------------------------------

    def worktree_add_detached(self, path: Path, commit: str) -> None:
        self.run(["worktree", "add", "--detach", "--quiet", str(path), commit])

    def worktree_remove(self, path: Path) -> CommandResult:
        return self.run(["worktree", "remove", "--force", str(path)], check=False)

    def worktree_prune(self) -> None:
        self.run(["worktree", "prune"], check=False)

    def is_clean(self) -> bool:
        status = self.run(["status", "--porcelain", "--untracked-files=no"]).stdout
        return not status.strip()

    def checkout_detached(self, commit: str) -> None:
        self.run(["checkout", "--quiet", "--detach", commit])

    def checkout(self, ref: str) -> None:
        self.run(["checkout", "--quiet", ref])

    def reset_hard(self) -> None:
        self.run(["reset", "--hard", "--quiet"])

    # -- plumbing --------------------------------------------------------

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        input_text: str | None = None,
    ) -> CommandResult:
        command = ("git", *args)
        run_cwd = (cwd if cwd is not None else self.root).resolve()
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)

        self._logger.debug("git", command=" ".join(command))
        completed = subprocess.run(
            command,
            cwd=run_cwd,
            env=env,
            text=True,
            capture_output=True,
            input=input_text,
            check=False,
        )

        result = CommandResult(
            command=command,
            cwd=run_cwd.as_posix(),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if result.stderr.strip() and not result.ok:
            self._logger.debug("git stderr", text=result.stderr.strip())

        if check and not result.ok:
            raise self._error(result)
        return result

    @staticmethod
    def _error(result: CommandResult) -> GitCommandError:
        return GitCommandError(
            command=result.command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )


__all__ = ["CommandResult", "GitRepository"]
