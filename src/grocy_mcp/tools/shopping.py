"""Shopping list tools."""

from typing import Optional

from mcp.types import CallToolResult, Tool

from . import ToolModule
from ..config import Settings
from .helpers import EMPTY_SCHEMA, ToolContext, require


def register(options: Optional[dict[str, dict[str, bool]]] = None, settings: Optional[Settings] = None) -> ToolModule:
    tools = [
        Tool(
            name="get_shopping_list",
            description="Get your current shopping list items.",
            inputSchema=EMPTY_SCHEMA,
        ),
        Tool(
            name="add_shopping_list_item",
            description="Add an item to your shopping list. Use get_products first to find the product ID you want to add.",
            inputSchema={
                "type": "object",
                "properties": {
                    "productId": {"type": "number", "description": "ID of the product to add."},
                    "amount": {"type": "number", "description": "Amount to add (default: 1)", "default": 1},
                    "shoppingListId": {
                        "type": "number",
                        "description": "ID of the shopping list (default: 1). Most users have only one shopping list.",
                        "default": 1,
                    },
                    "note": {"type": "string", "description": "Optional note for the shopping list item"},
                },
                "required": ["productId"],
            },
        ),
        Tool(
            name="remove_shopping_list_item",
            description="Remove an item from your shopping list. Use get_shopping_list first to find the item ID.",
            inputSchema={
                "type": "object",
                "properties": {
                    "shoppingListItemId": {"type": "number", "description": "ID of the shopping list item to remove."},
                },
                "required": ["shoppingListItemId"],
            },
        ),
        Tool(
            name="get_shopping_locations",
            description="Get all shopping locations (stores). Use this to find store IDs for tools that take a storeId.",
            inputSchema=EMPTY_SCHEMA,
        ),
    ]

    handlers = {
        "get_shopping_list": _handle_get_shopping_list,
        "add_shopping_list_item": _handle_add_shopping_list_item,
        "remove_shopping_list_item": _handle_remove_shopping_list_item,
        "get_shopping_locations": _handle_get_shopping_locations,
    }

    return ToolModule(tools=tools, handlers=handlers)


async def _handle_get_shopping_list(ctx: ToolContext, args: dict) -> CallToolResult:
    return await ctx.call("/objects/shopping_list", "Get shopping list items")


async def _handle_add_shopping_list_item(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "productId", hint="Use get_products tool to find the correct product ID.")
    body = {
        "product_id": args["productId"],
        "amount": args.get("amount", 1),
        "shopping_list_id": args.get("shoppingListId", 1),
        "note": args.get("note", ""),
    }
    return await ctx.call("/objects/shopping_list", "Add shopping list item", method="POST", body=body)


async def _handle_remove_shopping_list_item(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "shoppingListItemId", hint="Use get_shopping_list tool to find the item ID.")
    return await ctx.call(
        f"/objects/shopping_list/{args['shoppingListItemId']}", "Remove shopping list item", method="DELETE"
    )


async def _handle_get_shopping_locations(ctx: ToolContext, args: dict) -> CallToolResult:
    return await ctx.call("/objects/shopping_locations", "Get all shopping locations")
