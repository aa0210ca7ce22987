"""Guarded deletion helpers for worktree directories."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

PathLike = str | os.PathLike[str]


def is_empty_dir(path: PathLike) -> bool:
    candidate = Path(path)
    return candidate.is_dir() and not any(candidate.iterdir())


def safe_delete(path: PathLike, root: PathLike) -> None:
    """
    Delete ``path`` only if it is contained within ``root``.

    Symlinks are unlinked without traversing into their targets. A missing
    path is not an error.
    """

    base = Path(root).resolve(strict=False)
    target = Path(path)
    if not target.exists() and not target.is_symlink():
        return

    candidate = target.parent.resolve(strict=False) / target.name
    if candidate == base or not _is_relative_to(candidate, base):
        raise ValueError(f"refusing to delete path outside {base!s}: {target!s}")

    if target.is_symlink():
        target.unlink()
        return
    if target.is_dir():
        shutil.rmtree(target)
        return
    target.unlink()


def prune_empty_parents(path: PathLike, root: PathLike) -> None:
    """Remove empty directories from ``path``'s parent upward, stopping at ``root``."""

    base = Path(root).resolve(strict=False)
    current = Path(path).parent.resolve(strict=False)
    while current != base and _is_relative_to(current, base):
        if not is_empty_dir(current):
            return
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


__all__ = ["is_empty_dir", "prune_empty_parents", "safe_delete"]
