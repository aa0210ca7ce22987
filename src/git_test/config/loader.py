"""
Load effective settings.

Precedence: CLI > env (``GIT_TEST_``) > ``git-test.toml`` at the repository
root > built-in defaults. Env names are derived from the field path, for
example ``run.jobs`` -> ``GIT_TEST_RUN_JOBS``.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

from git_test.config.schema import Settings, default_config, merge_config, validate_config
from git_test.constants import CONFIG_FILE_NAME, ENV_PREFIX
from git_test.errors import ConfigurationError

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, str]
    value_type: Literal["str", "int", "float", "bool"]


_BINDINGS: Final[tuple[_Binding, ...]] = (
    _Binding(("run", "jobs"), "int"),
    _Binding(("run", "worktree_dir"), "str"),
    _Binding(("run", "isolate"), "bool"),
    _Binding(("run", "timeout_seconds"), "float"),
    _Binding(("store", "notes_prefix"), "str"),
    _Binding(("store", "summary_ref"), "str"),
    _Binding(("store", "max_output_chars"), "int"),
)


def load_settings(
    repo_root: str | Path,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    config_path: str | Path | None = None,
) -> Settings:
    """Return validated settings for the repository at ``repo_root``.

    ``cli_overrides`` uses dotted keys (``"run.jobs"``); ``None`` values are
    ignored so unset command-line options never mask lower layers.
    """

    explicit = config_path is not None
    path = Path(config_path) if explicit else Path(repo_root) / CONFIG_FILE_NAME
    env_map = dict(os.environ if environ is None else environ)

    merged = merge_config(default_config(), load_config_file(path, required=explicit))
    merged = merge_config(merged, collect_env_overrides(env_map))
    merged = merge_config(merged, _materialize_cli_overrides(cli_overrides or {}))
    return validate_config(merged)


def load_config_file(path: Path, *, required: bool = False) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"unable to read config file {path}: {exc}") from exc


def collect_env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for binding in _BINDINGS:
        env_name = env_name_for_path(binding.path)
        raw = environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        section, key = binding.path
        overrides.setdefault(section, {})[key] = _coerce_env(raw, binding, env_name)
    return overrides


def env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _coerce_env(raw: str, binding: _Binding, env_name: str) -> object:
    value = raw.strip()
    dotted = ".".join(binding.path)
    if binding.value_type == "str":
        return value
    if binding.value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigurationError(f"{env_name} -> {dotted} must be an integer") from exc
    if binding.value_type == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigurationError(f"{env_name} -> {dotted} must be a number") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigurationError(f"{env_name} -> {dotted} must be a boolean (true/false/1/0/yes/no)")


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for key in sorted(cli_overrides):
        value = cli_overrides[key]
        if value is None:
            continue
        section, dot, name = key.partition(".")
        if not dot or not section or not name:
            raise ConfigurationError(f"invalid override key {key!r}; expected 'section.key'")
        payload.setdefault(section, {})[name] = value
    return payload


__all__ = [
    "collect_env_overrides",
    "env_name_for_path",
    "load_config_file",
    "load_settings",
]
