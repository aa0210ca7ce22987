"""
Test command execution.

A test run is modelled as an explicit :class:`CommandSpec` value (program,
arguments, working directory, environment) dispatched through a pluggable
:class:`CommandExecutor`. Production code uses
:class:`LocalSubprocessExecutor`; tests substitute a fake.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import signal
import time
from collections.abc import Mapping
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from git_test.constants import SHELL_ARGV
from git_test.errors import ExecutionError
from git_test.observability.logging import default_logger


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Portable command invocation contract."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    inherit_env: bool = True

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSpec.argv must not be empty")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("CommandSpec.timeout_seconds must be > 0")

    @classmethod
    def shell(
        cls,
        command: str,
        *,
        cwd: str | os.PathLike[str],
        timeout_seconds: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandSpec:
        return cls(
            argv=(*SHELL_ARGV, command),
            cwd=os.fspath(cwd),
            env=dict(env or {}),
            timeout_seconds=timeout_seconds,
        )

    def build_env(self) -> dict[str, str] | None:
        if self.inherit_env:
            if not self.env:
                return None
            merged = dict(os.environ)
            merged.update(self.env)
            return merged
        return dict(self.env)

    def display(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one command."""

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Run commands as local subprocesses, capturing stdout and stderr fully."""

    def __init__(
        self,
        *,
        default_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ValueError("default_timeout_seconds must be > 0")
        self._default_timeout_seconds = default_timeout_seconds
        self._logger = logger if logger is not None else default_logger(__name__)

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        timeout = (
            spec.timeout_seconds
            if spec.timeout_seconds is not None
            else self._default_timeout_seconds
        )
        self._logger.debug("exec", command=spec.display(), cwd=spec.cwd)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            raise ExecutionError(f"could not launch {spec.display()!r}: {exc}") from exc

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(process, timeout)
            timed_out = False
            exit_code = process.returncode
        except _CommandTimeoutError as exc:
            stdout_bytes, stderr_bytes = exc.stdout, exc.stderr
            timed_out = True
            exit_code = None

        result = CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            stdout=_normalize_output_text(stdout_bytes),
            stderr=_normalize_output_text(stderr_bytes),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
        )
        if result.stdout:
            self._logger.debug("stdout", text=result.stdout.rstrip("\n"))
        if result.stderr:
            self._logger.debug("stderr", text=result.stderr.rstrip("\n"))
        if timed_out:
            self._logger.warning("command timed out", command=spec.display(), timeout=timeout)
        return result


class _CommandTimeoutError(Exception):
    def __init__(self, stdout: bytes, stderr: bytes) -> None:
        super().__init__("command timed out")
        self.stdout = stdout
        self.stderr = stderr


async def _communicate_with_timeout(
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        _kill_process_group(process)
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout_bytes, stderr_bytes) from exc
    except asyncio.CancelledError:
        _kill_process_group(process)
        await process.communicate()
        raise


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    # the shell runs as session leader, so its pid is the group id
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(process.pid, signal.SIGKILL)


def _elapsed_ms(started_ns: int) -> int:
    return max(0, (time.monotonic_ns() - started_ns) // 1_000_000)


def _normalize_output_text(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "LocalSubprocessExecutor",
]
