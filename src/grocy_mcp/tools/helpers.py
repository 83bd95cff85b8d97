"""Shared utilities for all tool modules."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from mcp.types import CallToolResult, TextContent

from ..config import Settings
from ..errors import invalid_params, redact
from ..grocy_client import ApiError, GrocyClient

logger = logging.getLogger("grocy-mcp")

TRUNCATION_MARKER = "\n... [truncated: response exceeded {limit} characters]"

EMPTY_SCHEMA = {"type": "object", "properties": {}, "required": []}


def safe_json(data: Any) -> str:
    """Pretty-print ``data`` as JSON, never raising."""
    try:
        return json.dumps(data, indent=2, default=str)
    except (TypeError, ValueError) as e:
        logger.error(f"Error serializing response data: {e}")
        return json.dumps({"error": "Error formatting response data"}, indent=2)


def require(arguments: dict, *names: str, hint: Optional[str] = None) -> None:
    """Raise invalid-params for the first missing argument.

    ``0`` and ``False`` count as present; ``None`` and ``""`` do not.
    """
    for name in names:
        value = arguments.get(name)
        if value is None or value == "":
            message = f"{name} is required"
            if hint:
                message += f". {hint}"
            raise invalid_params(message)


@dataclass
class ToolContext:
    """Capabilities handed to every tool handler for one call."""

    client: GrocyClient
    settings: Settings
    tool_name: str = ""
    options: dict[str, bool] = field(default_factory=dict)

    def option(self, name: str) -> bool:
        return self.options.get(name, False)

    def success(self, data: Any) -> CallToolResult:
        text = redact(safe_json(data), self.settings.secrets)
        limit = self.settings.response_size_limit
        if len(text) > limit:
            text = text[:limit] + TRUNCATION_MARKER.format(limit=limit)
        return CallToolResult(content=[TextContent(type="text", text=text)])

    def failure(self, message: str, context: Any = None) -> CallToolResult:
        payload: dict[str, Any] = {"error": redact(message, self.settings.secrets)}
        if context is not None:
            payload["context"] = context
        text = redact(safe_json(payload), self.settings.secrets)
        return CallToolResult(content=[TextContent(type="text", text=text)], isError=True)

    async def call(
        self,
        endpoint: str,
        description: str,
        method: str = "GET",
        body: Any = None,
        headers: Optional[dict[str, str]] = None,
        query_params: Optional[dict[str, Any]] = None,
    ) -> CallToolResult:
        """Issue one upstream call and shape the outcome into a tool result."""
        try:
            response = await self.client.request(
                endpoint, method=method, body=body, headers=headers, query_params=query_params
            )
        except ApiError as e:
            logger.error(f"Error in {description}: {e}")
            return self.failure(f"Failed to {description.lower()}: {e}")
        return self.success(response.data)
