"""Explicitly configured structlog loggers.

Nothing here touches process-wide logging state. Callers build a logger from
an :class:`OutputConfig` and pass it down to the components that need it.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from enum import StrEnum
from typing import IO, Any, Final

import structlog

_DEFAULT_LOGGER_NAME: Final[str] = "git_test"


class ColorMode(StrEnum):
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


@dataclass(frozen=True, slots=True)
class OutputConfig:
    """Verbosity and color settings threaded through a run."""

    verbosity: int = 0
    color: ColorMode = ColorMode.AUTO

    @classmethod
    def from_counts(cls, *, verbose: int, quiet: int, color: str = "auto") -> OutputConfig:
        return cls(verbosity=verbose - quiet, color=ColorMode(color))

    @property
    def level(self) -> int:
        return level_for_verbosity(self.verbosity)

    def use_color(self, stream: IO[str] | None = None) -> bool:
        if self.color is ColorMode.ALWAYS:
            return True
        if self.color is ColorMode.NEVER:
            return False
        if os.environ.get("NO_COLOR", ""):
            return False
        target = stream if stream is not None else sys.stderr
        return hasattr(target, "isatty") and target.isatty()


def level_for_verbosity(verbosity: int) -> int:
    if verbosity <= -2:
        return logging.ERROR
    if verbosity == -1:
        return logging.WARNING
    if verbosity == 0:
        return logging.INFO
    return logging.DEBUG


def build_logger(
    output: OutputConfig | None = None,
    *,
    stream: IO[str] | None = None,
    name: str = _DEFAULT_LOGGER_NAME,
) -> Any:
    """Return a bound logger honouring ``output`` without configuring structlog globally."""

    config = output if output is not None else OutputConfig()
    target = stream if stream is not None else sys.stderr

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
    ]
    if config.verbosity >= 1:
        processors.append(structlog.processors.TimeStamper(fmt="%H:%M:%S", utc=False))
    processors.append(structlog.dev.ConsoleRenderer(colors=config.use_color(target)))

    return structlog.wrap_logger(
        structlog.PrintLogger(file=target),
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(config.level),
        cache_logger_on_first_use=False,
        logger_name=name,
    )


def default_logger(name: str) -> Any:
    """Fallback logger for components constructed without an explicit one."""

    return structlog.get_logger(name)


__all__ = [
    "ColorMode",
    "OutputConfig",
    "build_logger",
    "default_logger",
    "level_for_verbosity",
]
