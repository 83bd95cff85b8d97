"""Tool dispatch: listing and calling tools under the enablement policy."""

import logging
import traceback
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from mcp.shared.exceptions import McpError
from mcp.types import CallToolResult, Tool

from .config import TOOL_PREFIX, Settings
from .errors import install_log_redaction, internal_error, invalid_request, method_not_found, redact
from .grocy_client import GrocyClient
from .policy import ToolPolicy, parse_tool_environment
from .registry import ToolRegistry, build_registry
from .resources import ResourceCatalogue
from .tools.helpers import ToolContext

logger = logging.getLogger("grocy-mcp")


@dataclass(frozen=True)
class AppContext:
    """Everything built once at startup and shared by all sessions."""

    settings: Settings
    registry: ToolRegistry
    policy: ToolPolicy
    client: GrocyClient
    resources: ResourceCatalogue


def build_app_context(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppContext:
    """Build the registry, validate the tool policy and create the REST client.

    Raises:
        ConfigurationError: If the ``TOOL__*`` configuration is invalid.
    """
    install_log_redaction(logger, settings.secrets)
    tool_env = parse_tool_environment(settings.tool_env)
    registry = build_registry(tool_env.options, settings)
    policy = ToolPolicy.configure(tool_env, registry)

    enabled, disabled = policy.partition(registry.get_tool_names())
    logger.info(f"Enabled tools ({len(enabled)}): {', '.join(enabled) or 'none'}")
    if not enabled:
        logger.warning(f"No tools enabled. Set {TOOL_PREFIX}<name>=true to enable tools.")
    logger.debug(f"Disabled tools: {', '.join(disabled)}")

    return AppContext(
        settings=settings,
        registry=registry,
        policy=policy,
        client=GrocyClient(settings, transport=transport),
        resources=ResourceCatalogue(),
    )


class ToolDispatcher:
    """Per-session front end to the shared registry and policy."""

    def __init__(self, context: AppContext):
        self.context = context

    def list_tools(self) -> list[Tool]:
        """Enabled tool definitions in registration order."""
        policy = self.context.policy
        return [tool for tool in self.context.registry.get_definitions() if policy.is_allowed(tool.name)]

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]]) -> CallToolResult:
        """Run one tool.

        Raises:
            McpError: method-not-found for unknown tools, invalid-request for
                disabled ones, invalid-params from the handler, internal-error
                for anything unexpected.
        """
        context = self.context
        handler = context.registry.get_handler(name)
        if handler is None:
            logger.warning(f"Unknown tool requested: {name}")
            raise method_not_found(f"Unknown tool: {name}")
        if not context.policy.is_allowed(name):
            logger.warning(f"Disabled tool requested: {name}")
            raise invalid_request(f"Tool '{name}' is not available. Set {TOOL_PREFIX}{name}=true to enable it.")

        ctx = ToolContext(
            client=context.client,
            settings=context.settings,
            tool_name=name,
            options=context.policy.options_for(name),
        )

        logger.info(f"Tool call: {name}")
        try:
            result = await handler(ctx, arguments or {})
        except McpError as e:
            logger.info(f"Tool {name} rejected: {e.error.message}")
            raise
        except Exception as e:
            secrets = context.settings.secrets
            logger.error(redact(f"Tool '{name}' failed with error: {type(e).__name__}: {e}", secrets))
            logger.error(redact(f"Traceback:\n{traceback.format_exc()}", secrets))
            raise internal_error(redact(f"Error in {name}: {type(e).__name__}: {e}", secrets)) from e

        if result.isError:
            logger.info(f"Tool {name} completed with an error result")
        else:
            logger.info(f"Tool {name} completed successfully")
        return result
