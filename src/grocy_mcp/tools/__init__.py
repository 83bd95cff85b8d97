"""Tool modules for the Grocy MCP Server."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable

from mcp.types import CallToolResult, Tool

if TYPE_CHECKING:
    from .helpers import ToolContext

ToolHandler = Callable[["ToolContext", dict], Awaitable[CallToolResult]]


@dataclass
class ToolModule:
    """A module of related MCP tools.

    ``options`` lists the ``TOOL__<name>__<option>`` keys each tool understands.
    """
    tools: list[Tool]
    handlers: dict[str, ToolHandler]
    options: dict[str, set[str]] = field(default_factory=dict)
