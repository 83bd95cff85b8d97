"""
Grocy MCP Server

Exposes a Grocy household-management instance to MCP clients over stdio,
streamable HTTP and SSE.
"""

__version__ = "1.0.0"

from .server import main, run, create_server  # noqa: E402

__all__ = ["main", "run", "create_server"]
