"""Settings loading and validation."""

from git_test.config.loader import (
    collect_env_overrides,
    env_name_for_path,
    load_config_file,
    load_settings,
)
from git_test.config.schema import (
    ConfigValidationError,
    ConfigValidationIssue,
    RunSettings,
    Settings,
    StoreSettings,
    validate_config,
)

__all__ = [
    "ConfigValidationError",
    "ConfigValidationIssue",
    "RunSettings",
    "Settings",
    "StoreSettings",
    "collect_env_overrides",
    "env_name_for_path",
    "load_config_file",
    "load_settings",
    "validate_config",
]
