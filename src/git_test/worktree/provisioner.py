"""
Disposable checkouts for test execution.

:class:`WorktreeProvisioner` gives every job its own detached ``git worktree``
under a base directory. :class:`InPlaceProvisioner` reuses the primary
working copy instead and can therefore only serve one job at a time.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from git_test.constants import DEFAULT_WORKTREE_DIR
from git_test.domain.models import validate_test_name
from git_test.errors import GitCommandError, ProvisionError
from git_test.observability.logging import default_logger
from git_test.utils.fs import is_empty_dir, prune_empty_parents, safe_delete

if TYPE_CHECKING:
    from git_test.git.repository import GitRepository


@runtime_checkable
class Provisioner(Protocol):
    """Checkout lifecycle used by the runner."""

    @property
    def isolated(self) -> bool: ...

    def path_for(self, key: str, test: str) -> Path: ...

    def create(self, commit: str, path: Path) -> None: ...

    def destroy(self, path: Path) -> None: ...

    def prune(self) -> None: ...

    def close(self) -> None: ...


class WorktreeProvisioner:
    """Create and remove detached worktrees below ``base``."""

    def __init__(
        self,
        repo: GitRepository,
        base: Path | str | None = None,
        *,
        logger: Any | None = None,
    ) -> None:
        self._repo = repo
        configured = Path(base) if base is not None else Path(DEFAULT_WORKTREE_DIR)
        self._base = (configured if configured.is_absolute() else repo.root / configured).resolve(
            strict=False
        )
        self._logger = logger if logger is not None else default_logger(__name__)
        self._lock = threading.Lock()

    @property
    def isolated(self) -> bool:
        return True

    @property
    def base(self) -> Path:
        return self._base

    def path_for(self, key: str, test: str) -> Path:
        if not key or "/" in key or key in {".", ".."}:
            raise ValueError(f"invalid worktree key: {key!r}")
        return self._base / key / validate_test_name(test)

    def create(self, commit: str, path: Path) -> None:
        if path.exists() and not is_empty_dir(path):
            raise ProvisionError(f"worktree path is not empty: {path}")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProvisionError(f"cannot create {path.parent}: {exc}") from exc

        with self._lock:
            try:
                self._repo.worktree_add_detached(path, commit)
            except GitCommandError as exc:
                raise ProvisionError(f"cannot check out {commit[:12]} at {path}: {exc}") from exc
        self._logger.debug("worktree created", path=str(path), commit=commit)

    def destroy(self, path: Path) -> None:
        """Remove ``path`` and its worktree registration; safe after a failed ``create``."""

        with self._lock:
            result = self._repo.worktree_remove(path)
            if not result.ok:
                self._logger.debug("worktree remove failed", path=str(path), stderr=result.stderr.strip())
            try:
                safe_delete(path, self._base)
                prune_empty_parents(path, self._base)
            except (OSError, ValueError) as exc:
                self._logger.warning("worktree cleanup incomplete", path=str(path), error=str(exc))
                return
            if not result.ok:
                self._repo.worktree_prune()
        self._logger.debug("worktree removed", path=str(path))

    def prune(self) -> None:
        with self._lock:
            self._repo.worktree_prune()

    def close(self) -> None:
        with self._lock:
            if is_empty_dir(self._base):
                self._base.rmdir()


class InPlaceProvisioner:
    """Check commits out in the primary working copy, restoring HEAD on ``close``."""

    def __init__(self, repo: GitRepository, *, logger: Any | None = None) -> None:
        self._repo = repo
        self._logger = logger if logger is not None else default_logger(__name__)
        self._lock = threading.Lock()
        self._original_head: str | None = None

    @property
    def isolated(self) -> bool:
        return False

    def path_for(self, key: str, test: str) -> Path:
        validate_test_name(test)
        return self._repo.root

    def create(self, commit: str, path: Path) -> None:
        with self._lock:
            try:
                if not self._repo.is_clean():
                    raise ProvisionError(
                        f"working copy {self._repo.root} has uncommitted changes; "
                        "commit or stash them, or run with worktrees"
                    )
                if self._original_head is None:
                    self._original_head = self._current_head()
                self._repo.checkout_detached(commit)
            except GitCommandError as exc:
                raise ProvisionError(f"cannot check out {commit[:12]} in place: {exc}") from exc
        self._logger.debug("checked out in place", commit=commit)

    def destroy(self, path: Path) -> None:
        """Discard tracked changes a test left behind in the working copy."""

        with self._lock:
            # only once this provisioner owns the checkout
            if self._original_head is None:
                return
            try:
                self._repo.reset_hard()
            except GitCommandError as exc:
                raise ProvisionError(f"cannot reset working copy {self._repo.root}: {exc}") from exc
        self._logger.debug("working copy reset", path=str(path))

    def prune(self) -> None:
        return None

    def close(self) -> None:
        with self._lock:
            if self._original_head is None:
                return
            original, self._original_head = self._original_head, None
            try:
                self._repo.checkout(original)
            except GitCommandError as exc:
                raise ProvisionError(f"cannot restore original HEAD {original}: {exc}") from exc
        self._logger.debug("restored HEAD", ref=original)

    def _current_head(self) -> str:
        symbolic = self._repo.symbolic_head()
        if symbolic is not None:
            return symbolic.removeprefix("refs/heads/")
        return self._repo.head_commit()


__all__ = ["InPlaceProvisioner", "Provisioner", "WorktreeProvisioner"]
