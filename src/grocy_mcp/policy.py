"""Tool enablement policy.

Every tool is disabled unless the deployment opts in with
``TOOL__<name>=true``. Per-tool options use ``TOOL__<name>__<option>=true``.
Unknown tool or option names and values other than ``true``/``false`` are
configuration errors, so a typo stops the server at startup instead of
silently leaving a tool off.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from .config import TOOL_PREFIX
from .errors import ConfigurationError
from .registry import ToolRegistry

logger = logging.getLogger("grocy-mcp")

OPTION_SEPARATOR = "__"


@dataclass(frozen=True)
class ToolEnvironment:
    """Parsed ``TOOL__*`` variables, not yet checked against a registry."""

    enabled: Mapping[str, bool] = field(default_factory=dict)
    options: Mapping[str, Mapping[str, bool]] = field(default_factory=dict)


def _parse_flag(key: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ConfigurationError(f"{key} must be 'true' or 'false', got '{value}'")


def parse_tool_environment(env: Mapping[str, str]) -> ToolEnvironment:
    """Split ``TOOL__*`` variables into tool flags and tool options.

    Raises:
        ConfigurationError: On malformed keys or non-boolean values.
    """
    enabled: dict[str, bool] = {}
    options: dict[str, dict[str, bool]] = {}

    for key, value in env.items():
        if not key.startswith(TOOL_PREFIX):
            continue
        parts = key[len(TOOL_PREFIX):].split(OPTION_SEPARATOR)
        if not all(parts) or len(parts) > 2:
            raise ConfigurationError(
                f"Malformed tool variable '{key}': expected {TOOL_PREFIX}<tool> or {TOOL_PREFIX}<tool>__<option>"
            )
        flag = _parse_flag(key, value)
        if len(parts) == 1:
            enabled[parts[0]] = flag
        else:
            options.setdefault(parts[0], {})[parts[1]] = flag

    return ToolEnvironment(enabled=enabled, options=options)


@dataclass(frozen=True)
class ToolPolicy:
    """Read-only answer to "may this tool be listed and called?"."""

    enabled: frozenset = frozenset()
    options: Mapping[str, Mapping[str, bool]] = field(default_factory=dict)

    @classmethod
    def configure(cls, tool_env: ToolEnvironment, registry: ToolRegistry) -> "ToolPolicy":
        """Validate ``tool_env`` against ``registry`` and freeze it.

        Raises:
            ConfigurationError: If a tool or option name is not registered.
        """
        errors = []
        for name in tool_env.enabled:
            if name not in registry:
                errors.append(f"{TOOL_PREFIX}{name}: unknown tool")
        for name, opts in tool_env.options.items():
            if name not in registry:
                errors.append(f"{TOOL_PREFIX}{name}{OPTION_SEPARATOR}...: unknown tool")
                continue
            known = registry.known_options(name)
            for option in opts:
                if option not in known:
                    errors.append(f"{TOOL_PREFIX}{name}{OPTION_SEPARATOR}{option}: unknown option")
        if errors:
            raise ConfigurationError("Invalid tool configuration:\n" + "\n".join(f"  - {e}" for e in errors))

        enabled = frozenset(name for name, flag in tool_env.enabled.items() if flag)
        options = MappingProxyType({
            name: MappingProxyType(dict(opts)) for name, opts in tool_env.options.items()
        })
        return cls(enabled=enabled, options=options)

    def is_allowed(self, name: str) -> bool:
        return name in self.enabled

    def options_for(self, name: str) -> dict[str, bool]:
        return dict(self.options.get(name, {}))

    def partition(self, names: list[str]) -> tuple[list[str], list[str]]:
        """Split ``names`` into (enabled, disabled), preserving order."""
        allowed = [n for n in names if self.is_allowed(n)]
        blocked = [n for n in names if not self.is_allowed(n)]
        return allowed, blocked
