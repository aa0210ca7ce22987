"""Logging primitives configured from an explicit :class:`OutputConfig`."""

from git_test.observability.logging import (
    ColorMode,
    OutputConfig,
    build_logger,
    default_logger,
    level_for_verbosity,
)

__all__ = [
    "ColorMode",
    "OutputConfig",
    "build_logger",
    "default_logger",
    "level_for_verbosity",
]
