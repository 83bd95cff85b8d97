"""Stock tools: stock overview, purchase/consume/transfer/open, lookup, labels, splitting.

Tools that act on one stock entry take both ``stockId`` and ``productId``.
The entry is fetched first and the call is refused when it belongs to a
different product, so a mistyped id cannot touch the wrong stock.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from . import ToolModule
from ..config import Settings
from .helpers import EMPTY_SCHEMA, ToolContext, require
from ..errors import invalid_params
from ..grocy_client import ApiError
from ..matching import rank_products
from ..stock_split import proportional_amounts, split_stock_entry

logger = logging.getLogger("grocy-mcp")

OPTIONS = {
    "consume_product": {"allow_fifo"},
}

LOOKUP_LIMIT = 5

_PRODUCT_HINT = "Use get_products tool to find the correct product ID by name."
_ENTRY_HINT = "Use get_product_entries tool to find stock entry IDs for a product."


def _default_best_before() -> str:
    return (date.today() + timedelta(days=365)).isoformat()


def consume_product_tool(allow_fifo: bool = False) -> Tool:
    """Build the ``consume_product`` definition.

    With ``allow_fifo`` the stock entry becomes optional and Grocy consumes
    first-in-first-out; otherwise a specific ``stockId`` is required.
    """
    required = ["productId", "amount"] if allow_fifo else ["stockId", "productId", "amount"]
    stock_desc = "ID of the specific stock entry to consume."
    if allow_fifo:
        stock_desc += " Optional: when omitted, the oldest stock is consumed first (FIFO)."
    return Tool(
        name="consume_product",
        description="Track consumption of a product in your Grocy instance.",
        inputSchema={
            "type": "object",
            "properties": {
                "stockId": {"type": "number", "description": stock_desc},
                "productId": {"type": "number", "description": "ID of the product being consumed."},
                "amount": {
                    "type": "number",
                    "description": "Amount to consume in the product's stock unit (e.g., 1 piece, 0.5 kg, 250 ml).",
                },
                "spoiled": {
                    "type": "boolean",
                    "description": "Whether the product is spoiled (default: false)",
                    "default": False,
                },
                "recipeId": {"type": "number", "description": "Recipe the consumption belongs to (optional)"},
                "locationId": {"type": "number", "description": "Location to consume from (optional)"},
                "note": {"type": "string", "description": "Optional note"},
            },
            "required": required,
        },
    )


def register(options: Optional[dict[str, dict[str, bool]]] = None, settings: Optional[Settings] = None) -> ToolModule:
    options = options or {}
    allow_fifo = options.get("consume_product", {}).get("allow_fifo", False)

    entry_props = {
        "stockId": {"type": "number", "description": "ID of the specific stock entry."},
        "productId": {"type": "number", "description": "ID of the product the stock entry belongs to."},
    }

    tools = [
        Tool(
            name="get_stock",
            description="Get the current stock of all products from your Grocy instance, with amounts, best before dates and product details.",
            inputSchema=EMPTY_SCHEMA,
        ),
        Tool(
            name="get_stock_volatile",
            description="Get volatile stock information (due products, overdue products, expired products, missing products).",
            inputSchema={
                "type": "object",
                "properties": {
                    "includeDetails": {
                        "type": "boolean",
                        "description": "Whether to include additional details about each stock item",
                    },
                },
                "required": [],
            },
        ),
        Tool(
            name="get_stock_by_location",
            description="Get stock entries from a specific location in your Grocy instance. Use get_locations to find location IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "locationId": {"type": "number", "description": "ID of the location to get stock for."},
                },
                "required": ["locationId"],
            },
        ),
        Tool(
            name="inventory_product",
            description="Track a product inventory (set current stock amount). Use get_products to find the product ID and get_locations to find location IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "productId": {"type": "number", "description": f"ID of the product to inventory. {_PRODUCT_HINT}"},
                    "newAmount": {"type": "number", "description": "The new total amount in stock in the product's stock unit."},
                    "bestBeforeDate": {"type": "string", "description": "Best before date in YYYY-MM-DD format (default: today + 1 year)"},
                    "locationId": {"type": "number", "description": "ID of the storage location. Use get_locations tool to find location IDs."},
                    "note": {"type": "string", "description": "Optional note"},
                },
                "required": ["productId", "newAmount", "locationId"],
            },
        ),
        Tool(
            name="purchase_product",
            description="Track a product purchase in your Grocy instance. Use get_products for product IDs, get_shopping_locations for store IDs and get_locations for storage location IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "productId": {"type": "number", "description": f"ID of the product to purchase. {_PRODUCT_HINT}"},
                    "amount": {"type": "number", "description": "Amount to purchase in the product's stock unit (default: 1)."},
                    "bestBeforeDate": {"type": "string", "description": "Best before date in YYYY-MM-DD format (default: today + 1 year)"},
                    "price": {"type": "number", "description": "Price of the purchase (optional)"},
                    "storeId": {"type": "number", "description": "ID of the store where purchased (optional)."},
                    "locationId": {"type": "number", "description": "ID of the storage location."},
                    "note": {"type": "string", "description": "Optional note"},
                },
                "required": ["productId", "amount", "locationId"],
            },
        ),
        consume_product_tool(allow_fifo),
        Tool(
            name="transfer_product",
            description="Transfer a specific stock entry to another location in your Grocy instance.",
            inputSchema={
                "type": "object",
                "properties": {
                    **entry_props,
                    "amount": {"type": "number", "description": "Amount to transfer in the product's stock unit."},
                    "locationIdTo": {"type": "number", "description": "ID of the destination location."},
                    "note": {"type": "string", "description": "Optional note for this transfer"},
                },
                "required": ["stockId", "productId", "amount", "locationIdTo"],
            },
        ),
        Tool(
            name="open_product",
            description="Mark a specific stock entry as opened in your Grocy instance.",
            inputSchema={
                "type": "object",
                "properties": {
                    **entry_props,
                    "amount": {"type": "number", "description": "Amount to mark as opened in the product's stock unit."},
                    "note": {"type": "string", "description": "Optional note"},
                },
                "required": ["stockId", "productId", "amount"],
            },
        ),
        Tool(
            name="lookup_product",
            description="Lookup product information with fuzzy name matching. Returns matching products with exact IDs, stock details and stock entries.",
            inputSchema={
                "type": "object",
                "properties": {
                    "productName": {"type": "string", "description": "Name of the product to lookup."},
                },
                "required": ["productName"],
            },
        ),
        Tool(
            name="print_stock_entry_label",
            description="Print a label for a specific stock entry.",
            inputSchema={
                "type": "object",
                "properties": entry_props,
                "required": ["stockId", "productId"],
            },
        ),
        Tool(
            name="split_stock_entry",
            description=(
                "Split one stock entry into several entries, e.g. to portion a batch. "
                "Give either explicit amounts (must add up to the entry amount) or a number of equal parts. "
                "Each resulting entry's note is tagged #<stockId>-<n>."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    **entry_props,
                    "amounts": {
                        "type": "array",
                        "items": {"type": "number"},
                        "description": "Amounts of the resulting entries; the first stays on the original entry.",
                    },
                    "parts": {"type": "integer", "description": "Number of equal parts (alternative to amounts)."},
                },
                "required": ["stockId", "productId"],
            },
        ),
    ]

    handlers = {
        "get_stock": _handle_get_stock,
        "get_stock_volatile": _handle_get_stock_volatile,
        "get_stock_by_location": _handle_get_stock_by_location,
        "inventory_product": _handle_inventory_product,
        "purchase_product": _handle_purchase_product,
        "consume_product": _handle_consume_product,
        "transfer_product": _handle_transfer_product,
        "open_product": _handle_open_product,
        "lookup_product": _handle_lookup_product,
        "print_stock_entry_label": _handle_print_stock_entry_label,
        "split_stock_entry": _handle_split_stock_entry,
    }

    return ToolModule(tools=tools, handlers=handlers, options=OPTIONS)


# =============================================================================
# Handler implementations
# =============================================================================

async def _load_entry(ctx: ToolContext, args: dict, action: str) -> tuple[Optional[dict], Optional[CallToolResult]]:
    """Fetch the stock entry named by ``stockId`` and check it belongs to ``productId``.

    Returns ``(entry, None)`` or ``(None, failure_result)``.
    """
    stock_id = args["stockId"]
    product_id = args["productId"]
    try:
        response = await ctx.client.get(f"/stock/entry/{stock_id}")
    except ApiError as e:
        return None, ctx.failure(f"Failed to {action}: {e}", {"stockId": stock_id, "help": _ENTRY_HINT})

    entry = response.data
    if not isinstance(entry, dict) or not entry:
        return None, ctx.failure(f"Failed to {action}: stock entry {stock_id} not found", {"help": _ENTRY_HINT})
    if str(entry.get("product_id")) != str(product_id):
        return None, ctx.failure(
            f"Failed to {action}: stock entry {stock_id} belongs to product {entry.get('product_id')}, not {product_id}",
            {"stockId": stock_id, "productId": product_id},
        )
    return entry, None


async def _handle_get_stock(ctx: ToolContext, args: dict) -> CallToolResult:
    return await ctx.call("/stock", "Get current stock")


async def _handle_get_stock_volatile(ctx: ToolContext, args: dict) -> CallToolResult:
    query = {"include_details": "true"} if args.get("includeDetails") else None
    return await ctx.call("/stock/volatile", "Get volatile stock information", query_params=query)


async def _handle_get_stock_by_location(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "locationId", hint="Use get_locations tool to find location IDs.")
    return await ctx.call(f"/stock/locations/{args['locationId']}/entries", "Get stock by location")


async def _handle_inventory_product(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "productId", "newAmount", hint=_PRODUCT_HINT)

    body: dict[str, Any] = {
        "new_amount": args["newAmount"],
        "best_before_date": args.get("bestBeforeDate") or _default_best_before(),
        "transaction_type": "inventory-correction",
    }
    if args.get("locationId"):
        body["location_id"] = args["locationId"]
    if args.get("note"):
        body["note"] = args["note"]

    return await ctx.call(f"/stock/products/{args['productId']}/inventory", "Inventory product", method="POST", body=body)


async def _handle_purchase_product(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "productId", hint=_PRODUCT_HINT)

    body: dict[str, Any] = {
        "amount": args.get("amount", 1),
        "transaction_type": "purchase",
        "best_before_date": args.get("bestBeforeDate") or _default_best_before(),
    }
    if args.get("price") is not None:
        body["price"] = args["price"]
    if args.get("storeId"):
        body["shopping_location_id"] = args["storeId"]
    if args.get("locationId"):
        body["location_id"] = args["locationId"]
    if args.get("note"):
        body["note"] = args["note"]

    return await ctx.call(f"/stock/products/{args['productId']}/add", "Purchase product", method="POST", body=body)


async def _handle_consume_product(ctx: ToolContext, args: dict) -> CallToolResult:
    if ctx.option("allow_fifo"):
        require(args, "productId", "amount")
    else:
        require(args, "stockId", "productId", "amount", hint=_ENTRY_HINT)

    spoiled = bool(args.get("spoiled", False))
    body: dict[str, Any] = {
        "amount": args["amount"],
        "transaction_type": "consume-spoiled" if spoiled else "consume",
        "spoiled": spoiled,
    }

    if args.get("stockId") is not None:
        entry, error = await _load_entry(ctx, args, "consume product")
        if error:
            return error
        body["stock_entry_id"] = entry.get("stock_id", args["stockId"])
    if args.get("recipeId"):
        body["recipe_id"] = args["recipeId"]
    if args.get("locationId"):
        body["location_id"] = args["locationId"]
    if args.get("note"):
        body["note"] = args["note"]

    return await ctx.call(f"/stock/products/{args['productId']}/consume", "Consume product", method="POST", body=body)


async def _handle_transfer_product(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "stockId", "productId", "amount", "locationIdTo")

    entry, error = await _load_entry(ctx, args, "transfer product")
    if error:
        return error

    body: dict[str, Any] = {
        "amount": args["amount"],
        "location_id_from": entry.get("location_id"),
        "location_id_to": args["locationIdTo"],
        "transaction_type": "transfer",
        "stock_entry_id": entry.get("stock_id", args["stockId"]),
    }
    if args.get("note"):
        body["note"] = args["note"]

    return await ctx.call(f"/stock/products/{args['productId']}/transfer", "Transfer product", method="POST", body=body)


async def _handle_open_product(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "stockId", "productId", hint=_ENTRY_HINT)

    entry, error = await _load_entry(ctx, args, "open product")
    if error:
        return error

    body: dict[str, Any] = {
        "amount": args.get("amount", 1),
        "stock_entry_id": entry.get("stock_id", args["stockId"]),
    }
    if args.get("note"):
        body["note"] = args["note"]

    return await ctx.call(f"/stock/products/{args['productId']}/open", "Open product", method="POST", body=body)


async def _handle_print_stock_entry_label(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "stockId", "productId", hint=_ENTRY_HINT)

    _, error = await _load_entry(ctx, args, "print stock entry label")
    if error:
        return error
    return await ctx.call(f"/stock/entry/{args['stockId']}/printlabel", "Print stock entry label")


async def _product_details(ctx: ToolContext, product: dict) -> dict:
    """Fetch stock details and entries for one product; failures are annotated, not raised."""
    product_id = product.get("id")
    details, entries = await asyncio.gather(
        ctx.client.get(f"/stock/products/{product_id}"),
        ctx.client.get(f"/stock/products/{product_id}/entries"),
        return_exceptions=True,
    )
    result: dict[str, Any] = {"id": product_id, "name": product.get("name")}
    errors = []

    if isinstance(details, Exception):
        errors.append(f"details unavailable: {details}")
    else:
        data = details.data or {}
        result["stock_amount"] = data.get("stock_amount")
        result["location"] = data.get("location")
        result["quantity_unit_stock"] = data.get("quantity_unit_stock")
        result["next_due_date"] = data.get("next_due_date")

    if isinstance(entries, Exception):
        errors.append(f"stock entries unavailable: {entries}")
    else:
        result["stock_entries"] = [
            {k: e.get(k) for k in ("id", "stock_id", "amount", "best_before_date", "location_id", "open", "note")}
            for e in (entries.data or [])
        ]

    if errors:
        result["errors"] = errors
    return result


async def _handle_lookup_product(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "productName")
    query = args["productName"]

    try:
        response = await ctx.client.get("/objects/products")
    except ApiError as e:
        return ctx.failure(f"Failed to lookup product: {e}", {"productName": query})

    products = response.data if isinstance(response.data, list) else []
    matches = rank_products(query, products, limit=LOOKUP_LIMIT)
    if not matches:
        return ctx.success({"query": query, "matches": [], "message": f"No products matching '{query}'"})

    detailed = await asyncio.gather(*(_product_details(ctx, m["product"]) for m in matches))
    for match, info in zip(matches, detailed):
        info["match_score"] = match["score"]
        info["match_pass"] = match["pass"]

    return ctx.success({"query": query, "matches": detailed})


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


async def _handle_split_stock_entry(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "stockId", "productId", hint=_ENTRY_HINT)
    amounts = args.get("amounts")
    parts = args.get("parts")
    if not amounts and not parts:
        raise invalid_params("amounts or parts is required. Give the amounts of the resulting entries or a number of equal parts.")
    if amounts:
        if not isinstance(amounts, list) or not all(_is_number(a) for a in amounts):
            raise invalid_params("amounts must be a list of numbers")
    elif not isinstance(parts, int) or isinstance(parts, bool) or parts < 2:
        raise invalid_params("parts must be an integer of at least 2")

    entry, error = await _load_entry(ctx, args, "split stock entry")
    if error:
        return error

    amount = float(entry.get("amount") or 0)
    try:
        if not amounts:
            amounts = proportional_amounts(amount, parts)
        result = await split_stock_entry(ctx.client, entry, [float(a) for a in amounts])
    except ValueError as e:
        return ctx.failure(f"Failed to split stock entry: {e}", {"stockId": args["stockId"], "entryAmount": amount})
    except ApiError as e:
        return ctx.failure(f"Failed to split stock entry: {e}", {"stockId": args["stockId"]})

    if not result.complete:
        return ctx.failure("Stock entry was only partially split", result.to_dict())
    return ctx.success(result.to_dict())
