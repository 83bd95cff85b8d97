"""Product tools: catalogue, stock entries, price history and product groups."""

import logging
from typing import Optional

from mcp.types import CallToolResult, Tool

from . import ToolModule
from ..config import Settings
from .helpers import EMPTY_SCHEMA, ToolContext, require
from ..grocy_client import ApiError

logger = logging.getLogger("grocy-mcp")

_PRODUCT_HINT = "Use get_products tool to find the correct product ID by name."


def register(options: Optional[dict[str, dict[str, bool]]] = None, settings: Optional[Settings] = None) -> ToolModule:
    tools = [
        Tool(
            name="get_products",
            description="Get all products from your Grocy instance. Optionally limit the returned fields, e.g. to id and name, to keep the response small.",
            inputSchema={
                "type": "object",
                "properties": {
                    "fields": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Product fields to return (e.g. [\"id\", \"name\"]). Returns all fields when omitted.",
                    },
                },
                "required": [],
            },
        ),
        Tool(
            name="get_product_entries",
            description="Get all stock entries for a specific product, including entry IDs, amounts, best before dates and locations.",
            inputSchema={
                "type": "object",
                "properties": {
                    "productId": {"type": "number", "description": f"ID of the product. {_PRODUCT_HINT}"},
                },
                "required": ["productId"],
            },
        ),
        Tool(
            name="get_price_history",
            description="Get the price history of a product.",
            inputSchema={
                "type": "object",
                "properties": {
                    "productId": {"type": "number", "description": f"ID of the product. {_PRODUCT_HINT}"},
                },
                "required": ["productId"],
            },
        ),
        Tool(
            name="get_product_groups",
            description="Get all product groups from your Grocy instance.",
            inputSchema=EMPTY_SCHEMA,
        ),
    ]

    handlers = {
        "get_products": _handle_get_products,
        "get_product_entries": _handle_get_product_entries,
        "get_price_history": _handle_get_price_history,
        "get_product_groups": _handle_get_product_groups,
    }

    return ToolModule(tools=tools, handlers=handlers)


# =============================================================================
# Handler implementations
# =============================================================================

async def _handle_get_products(ctx: ToolContext, args: dict) -> CallToolResult:
    fields = args.get("fields")
    if not fields:
        return await ctx.call("/objects/products", "Get products")

    try:
        response = await ctx.client.get("/objects/products")
    except ApiError as e:
        logger.error(f"Error in Get products: {e}")
        return ctx.failure(f"Failed to get products: {e}")

    products = response.data if isinstance(response.data, list) else []
    projected = [{k: p.get(k) for k in fields if k in p} for p in products]
    return ctx.success(projected)


async def _handle_get_product_entries(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "productId", hint=_PRODUCT_HINT)
    return await ctx.call(f"/stock/products/{args['productId']}/entries", "Get product entries")


async def _handle_get_price_history(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "productId", hint=_PRODUCT_HINT)
    return await ctx.call(f"/stock/products/{args['productId']}/price-history", "Get price history")


async def _handle_get_product_groups(ctx: ToolContext, args: dict) -> CallToolResult:
    return await ctx.call("/objects/product_groups", "Get product groups")
