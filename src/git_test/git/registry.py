"""Test definitions stored in git config as ``test.<name>.command``."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from git_test.constants import TEST_COMMAND_KEY, TEST_CONFIG_SECTION
from git_test.domain.models import TestDefinition, validate_test_name
from git_test.errors import ConfigurationError

if TYPE_CHECKING:
    from git_test.git.repository import GitRepository

_TEST_KEY_RE = re.compile(
    rf"^{TEST_CONFIG_SECTION}\.(?P<name>.+)\.{TEST_COMMAND_KEY}$", re.IGNORECASE
)


class TestRegistry:
    """Read and edit the name -> command mapping kept in git config."""

    __test__ = False

    def __init__(self, repo: GitRepository) -> None:
        self._repo = repo

    def get(self, name: str) -> TestDefinition:
        validate_test_name(name)
        command = self._repo.config_get(_command_key(name))
        if command is None:
            raise ConfigurationError(f"test '{name}' is not defined")
        return TestDefinition(name=name, command=command)

    def find(self, name: str) -> TestDefinition | None:
        try:
            return self.get(name)
        except ConfigurationError:
            return None

    def list(self) -> list[TestDefinition]:
        pattern = rf"^{TEST_CONFIG_SECTION}\..*\.{TEST_COMMAND_KEY}$"
        definitions: dict[str, TestDefinition] = {}
        for key, value in self._repo.config_get_regexp(pattern):
            match = _TEST_KEY_RE.fullmatch(key)
            if match is None:
                continue
            name = match.group("name")
            definitions[name] = TestDefinition(name=name, command=value)
        return [definitions[name] for name in sorted(definitions)]

    def define(self, name: str, command: str) -> TestDefinition | None:
        """Set ``name`` to ``command``; return the previous definition, if any."""

        definition = TestDefinition(name=name, command=command)
        previous = self.find(name)
        self._repo.config_set(_command_key(name), definition.command)
        return previous

    def remove(self, name: str) -> bool:
        validate_test_name(name)
        return self._repo.config_remove_section(f"{TEST_CONFIG_SECTION}.{name}")


def _command_key(name: str) -> str:
    return f"{TEST_CONFIG_SECTION}.{name}.{TEST_COMMAND_KEY}"


__all__ = ["TestRegistry"]
