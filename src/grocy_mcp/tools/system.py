"""System tools: master data listings and raw API access."""

import logging
import re
import time
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from . import ToolModule
from ..config import API_KEY_HEADER, Settings
from .helpers import EMPTY_SCHEMA, ToolContext, require
from ..grocy_client import ApiError, normalize_endpoint

logger = logging.getLogger("grocy-mcp")

HTTP_METHODS = ["GET", "POST", "PUT", "DELETE"]

# name -> (endpoint, description, listing label)
LISTINGS = {
    "get_locations": (
        "/objects/locations",
        "Get all storage locations from your Grocy instance. Use this to find location IDs for tools that take a locationId.",
        "Get all storage locations",
    ),
    "get_quantity_units": ("/objects/quantity_units", "Get all quantity units from your Grocy instance.", "Get all quantity units"),
    "get_users": ("/users", "Get all users from your Grocy instance.", "Get all users"),
    "get_chores": ("/objects/chores", "Get all chores from your Grocy instance.", "Get all chores"),
    "get_tasks": ("/objects/tasks", "Get all tasks from your Grocy instance.", "Get all tasks"),
    "get_batteries": ("/objects/batteries", "Get all batteries from your Grocy instance.", "Get all batteries"),
    "get_equipment": ("/objects/equipment", "Get all equipment from your Grocy instance.", "Get all equipment"),
}


def describe_test_request(settings: Optional[Settings]) -> str:
    """Describe ``test_request`` with the deployment it will talk to."""
    if settings is None:
        return "Test a REST API endpoint and get detailed response information."
    ssl = "enabled" if settings.ssl_verify else "disabled"
    auth = f"API Key using header: {API_KEY_HEADER}" if settings.has_api_key else "No authentication configured"
    return (
        "Test a REST API endpoint and get detailed response information. "
        f"Base URL: {settings.grocy_base_url} | SSL Verification {ssl} (see config resource for SSL settings) | "
        f"Authentication: {auth}"
    )


def _listing_handler(endpoint: str, label: str):
    async def handler(ctx: ToolContext, args: dict) -> CallToolResult:
        return await ctx.call(endpoint, label)
    return handler


def register(options: Optional[dict[str, dict[str, bool]]] = None, settings: Optional[Settings] = None) -> ToolModule:
    tools = [
        Tool(name=name, description=description, inputSchema=EMPTY_SCHEMA)
        for name, (_, description, _) in LISTINGS.items()
    ]
    tools += [
        Tool(
            name="call_grocy_api",
            description="Call a specific Grocy API endpoint with custom parameters.",
            inputSchema={
                "type": "object",
                "properties": {
                    "endpoint": {
                        "type": "string",
                        "description": "Grocy API endpoint to call (e.g., \"objects/products\"). Do not include /api/ prefix.",
                    },
                    "method": {"type": "string", "enum": HTTP_METHODS, "description": "HTTP method to use", "default": "GET"},
                    "body": {"type": "object", "description": "Optional request body for POST/PUT requests"},
                },
                "required": ["endpoint"],
            },
        ),
        Tool(
            name="test_request",
            description=describe_test_request(settings),
            inputSchema={
                "type": "object",
                "properties": {
                    "method": {"type": "string", "enum": HTTP_METHODS, "description": "HTTP method to use"},
                    "endpoint": {
                        "type": "string",
                        "description": "Endpoint path (e.g. \"/users\"). Do not include full URLs, only the path.",
                    },
                    "body": {"type": "object", "description": "Optional request body for POST/PUT requests"},
                    "headers": {
                        "type": "object",
                        "description": "Optional request headers for one-time use.",
                        "additionalProperties": {"type": "string"},
                    },
                },
                "required": ["method", "endpoint"],
            },
        ),
    ]

    handlers = {name: _listing_handler(endpoint, label) for name, (endpoint, _, label) in LISTINGS.items()}
    handlers["call_grocy_api"] = _handle_call_grocy_api
    handlers["test_request"] = _handle_test_request

    return ToolModule(tools=tools, handlers=handlers)


# =============================================================================
# Raw API access
# =============================================================================

async def _handle_call_grocy_api(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "endpoint")
    endpoint = args["endpoint"]
    method = str(args.get("method") or "GET").upper()
    clean = "/" + re.sub(r"^/?(?:api/)?", "", endpoint)

    try:
        response = await ctx.client.request(clean, method=method, body=args.get("body"))
    except ApiError as e:
        logger.error(f"Error calling Grocy API endpoint {endpoint}: {e}")
        return ctx.failure(f"Failed to call Grocy API endpoint {endpoint}: {e}")
    return ctx.success(response.data)


async def _handle_test_request(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "method", "endpoint")
    method = str(args["method"]).upper()
    endpoint = "/" + str(args["endpoint"]).strip("/")
    headers = args.get("headers") or {}
    body = args.get("body")

    request_info: dict[str, Any] = {
        "url": f"{ctx.settings.grocy_base_url}{normalize_endpoint(endpoint)}",
        "method": method,
        "headers": {**ctx.settings.custom_headers, **headers},
        "body": body,
        "authMethod": "apikey" if ctx.settings.has_api_key else "none",
    }

    started = time.monotonic()
    try:
        response = await ctx.client.request(endpoint, method=method, body=body, headers=headers)
    except ApiError as e:
        if e.kind != "http":
            return ctx.failure(f"Test request failed: {e}", {"request": request_info})
        status, response_headers, data = e.status, {}, e.response
    else:
        status, response_headers, data = response.status, response.headers, response.data
    elapsed_ms = int((time.monotonic() - started) * 1000)

    failed = status >= 400
    return ctx.success({
        "request": request_info,
        "response": {
            "statusCode": status,
            "timing": f"{elapsed_ms}ms",
            "headers": response_headers,
            "body": data,
        },
        "validation": {
            "isError": failed,
            "messages": [f"Request failed with status {status}"] if failed else ["Request completed successfully"],
        },
    })
