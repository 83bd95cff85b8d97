"""Tool registry: the name -> (definition, handler) mapping.

Built once at startup and shared, read-only, by every session.
"""

import logging
import traceback
from typing import Iterable, Mapping, Optional

from mcp.types import Tool

from .config import Settings
from .tools import ToolHandler, ToolModule
from .tools import stock, products, recipes, shopping, system, meal_plan, actions

logger = logging.getLogger("grocy-mcp")

# Registration order is listing order.
TOOL_MODULES = [
    ("Stock", stock),
    ("Products", products),
    ("Recipes", recipes),
    ("Shopping", shopping),
    ("System", system),
    ("Meal plan", meal_plan),
    ("Actions", actions),
]


class ToolRegistry:
    """Ordered set of tool definitions with their handlers.

    Registering a name twice replaces the earlier definition and handler
    (last write wins) and logs a warning.
    """

    def __init__(self, modules: Iterable[ToolModule] = ()):
        self._definitions: dict[str, Tool] = {}
        self._handlers: dict[str, ToolHandler] = {}
        self._options: dict[str, set[str]] = {}
        for module in modules:
            self.add_module(module)

    def add_module(self, module: ToolModule) -> None:
        for tool in module.tools:
            handler = module.handlers.get(tool.name)
            if handler is None:
                logger.error(f"Tool {tool.name} has no handler, skipping")
                continue
            if tool.name in self._definitions:
                logger.warning(f"Duplicate tool registration: {tool.name} (later definition wins)")
                # Re-insert so the winning definition takes the later position.
                del self._definitions[tool.name]
            self._definitions[tool.name] = tool
            self._handlers[tool.name] = handler
            self._options[tool.name] = set(module.options.get(tool.name, ()))

    def get_definitions(self) -> list[Tool]:
        return list(self._definitions.values())

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        return self._handlers.get(name)

    def has_handler(self, name: str) -> bool:
        return name in self._handlers

    def get_tool_names(self) -> list[str]:
        return list(self._definitions)

    def known_options(self, name: str) -> set[str]:
        return self._options.get(name, set())

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, name: str) -> bool:
        return name in self._definitions


def build_registry(
    tool_options: Optional[Mapping[str, Mapping[str, bool]]] = None,
    settings: Optional[Settings] = None,
) -> ToolRegistry:
    """Register every tool module in order.

    Args:
        tool_options: Per-tool sub-configuration; some modules shape their
            schemas from it (e.g. ``consume_product`` with ``allow_fifo``).
        settings: Used by tools whose descriptions mention the deployment.
    """
    options = {name: dict(opts) for name, opts in (tool_options or {}).items()}
    registry = ToolRegistry()

    for label, module in TOOL_MODULES:
        try:
            mod = module.register(options, settings)
        except Exception as e:
            logger.error(f"Failed to load {label.lower()} module: {e}")
            logger.error(f"Traceback:\n{traceback.format_exc()}")
            continue
        registry.add_module(mod)
        logger.info(f"{label} module loaded ({len(mod.tools)} tools)")

    logger.info(f"Total tools registered: {len(registry)}")
    return registry
