"""Module entrypoint for ``python -m git_test``."""

from __future__ import annotations

from git_test.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
