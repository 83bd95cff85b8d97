"""Recipe tools."""

import logging
from datetime import date, timedelta
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from . import ToolModule
from ..config import Settings
from .helpers import EMPTY_SCHEMA, ToolContext, require
from ..grocy_client import ApiError
from ..stock_split import proportional_amounts, split_stock_entry

logger = logging.getLogger("grocy-mcp")

OPTIONS = {
    "mark_recipe_from_meal_plan_entry_as_cooked": {"print_label"},
}

_RECIPE_HINT = "Use get_recipes tool to find recipe IDs."


def register(options: Optional[dict[str, dict[str, bool]]] = None, settings: Optional[Settings] = None) -> ToolModule:
    recipe_id = {"recipeId": {"type": "number", "description": f"ID of the recipe. {_RECIPE_HINT}"}}

    tools = [
        Tool(
            name="get_recipes",
            description="Get all recipes from your Grocy instance. Optionally limit the returned fields, e.g. to id and name.",
            inputSchema={
                "type": "object",
                "properties": {
                    "fields": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Recipe fields to return (e.g. [\"id\", \"name\"]). Returns all fields when omitted.",
                    },
                },
                "required": [],
            },
        ),
        Tool(
            name="get_recipe_by_id",
            description="Get a specific recipe by its ID.",
            inputSchema={"type": "object", "properties": recipe_id, "required": ["recipeId"]},
        ),
        Tool(
            name="create_recipe",
            description="Create a new recipe in your Grocy instance.",
            inputSchema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Name of the recipe"},
                    "description": {"type": "string", "description": "Description or instructions of the recipe"},
                    "servings": {"type": "number", "description": "Base servings of the recipe (default: 1)"},
                    "desiredServings": {"type": "number", "description": "Desired servings (default: 1)"},
                },
                "required": ["name"],
            },
        ),
        Tool(
            name="get_recipe_fulfillment",
            description="Check whether the stock fulfills a recipe's ingredient requirements.",
            inputSchema={
                "type": "object",
                "properties": {
                    **recipe_id,
                    "servings": {"type": "number", "description": "Number of servings (default: 1)"},
                },
                "required": ["recipeId"],
            },
        ),
        Tool(
            name="get_recipes_fulfillment",
            description="Get stock fulfillment information for all recipes.",
            inputSchema=EMPTY_SCHEMA,
        ),
        Tool(
            name="consume_recipe",
            description="Consume all ingredients of a recipe from stock.",
            inputSchema={
                "type": "object",
                "properties": {
                    **recipe_id,
                    "servings": {"type": "number", "description": "Number of servings to consume (default: 1)"},
                },
                "required": ["recipeId"],
            },
        ),
        Tool(
            name="add_recipe_products_to_shopping_list",
            description="Add the products a recipe needs but are not in stock to the shopping list.",
            inputSchema={"type": "object", "properties": recipe_id, "required": ["recipeId"]},
        ),
        Tool(
            name="add_missing_products_to_shopping_list",
            description="Add all missing products for a recipe to a shopping list, for a given number of servings.",
            inputSchema={
                "type": "object",
                "properties": {
                    **recipe_id,
                    "servings": {"type": "number", "description": "Number of servings (default: 1)", "default": 1},
                    "shoppingListId": {
                        "type": "number",
                        "description": "ID of the shopping list to add to (default: 1). Most users have only one shopping list with ID 1.",
                        "default": 1,
                    },
                },
                "required": ["recipeId"],
            },
        ),
        Tool(
            name="mark_recipe_from_meal_plan_entry_as_cooked",
            description=(
                "Mark a planned recipe as cooked: finds the next undone meal plan entry for the recipe "
                "(from yesterday on), marks it done and consumes the ingredients. When the recipe produces "
                "a product, the new stock entry can be split into portions."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    **recipe_id,
                    "servings": {"type": "number", "description": "Number of servings cooked."},
                    "portions": {
                        "type": "integer",
                        "description": "Split the produced stock entry into this many equal portions (optional, at least 2).",
                    },
                },
                "required": ["recipeId", "servings"],
            },
        ),
    ]

    handlers = {
        "get_recipes": _handle_get_recipes,
        "get_recipe_by_id": _handle_get_recipe_by_id,
        "create_recipe": _handle_create_recipe,
        "get_recipe_fulfillment": _handle_get_recipe_fulfillment,
        "get_recipes_fulfillment": _handle_get_recipes_fulfillment,
        "consume_recipe": _handle_consume_recipe,
        "add_recipe_products_to_shopping_list": _handle_add_recipe_products_to_shopping_list,
        "add_missing_products_to_shopping_list": _handle_add_missing_products_to_shopping_list,
        "mark_recipe_from_meal_plan_entry_as_cooked": _handle_mark_cooked,
    }

    return ToolModule(tools=tools, handlers=handlers, options=OPTIONS)


# =============================================================================
# Handler implementations
# =============================================================================

async def _handle_get_recipes(ctx: ToolContext, args: dict) -> CallToolResult:
    # Meal plan entries create shadow recipes; only list real ones.
    query = {"query[]": "type=normal"}
    fields = args.get("fields")
    if not fields:
        return await ctx.call("/objects/recipes", "Get recipes", query_params=query)

    try:
        response = await ctx.client.get("/objects/recipes", query_params=query)
    except ApiError as e:
        logger.error(f"Error in Get recipes: {e}")
        return ctx.failure(f"Failed to get recipes: {e}")

    recipes = response.data if isinstance(response.data, list) else []
    return ctx.success([{k: r.get(k) for k in fields if k in r} for r in recipes])


async def _handle_get_recipe_by_id(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "recipeId", hint=_RECIPE_HINT)
    return await ctx.call(f"/objects/recipes/{args['recipeId']}", "Get recipe by ID")


async def _handle_create_recipe(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "name")
    body = {
        "name": args["name"],
        "description": args.get("description", ""),
        "base_servings": args.get("servings", 1),
        "desired_servings": args.get("desiredServings", 1),
    }
    return await ctx.call("/objects/recipes", "Create recipe", method="POST", body=body)


async def _handle_get_recipe_fulfillment(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "recipeId", hint=_RECIPE_HINT)
    servings = args.get("servings", 1)
    query = {"servings": servings} if servings != 1 else None
    return await ctx.call(f"/recipes/{args['recipeId']}/fulfillment", "Get recipe fulfillment", query_params=query)


async def _handle_get_recipes_fulfillment(ctx: ToolContext, args: dict) -> CallToolResult:
    return await ctx.call("/recipes/fulfillment", "Get all recipes fulfillment")


async def _handle_consume_recipe(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "recipeId", hint=_RECIPE_HINT)
    body = {"servings": args.get("servings", 1)}
    return await ctx.call(f"/recipes/{args['recipeId']}/consume", "Consume recipe", method="POST", body=body)


async def _handle_add_recipe_products_to_shopping_list(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "recipeId", hint=_RECIPE_HINT)
    return await ctx.call(
        f"/recipes/{args['recipeId']}/add-not-fulfilled-products-to-shoppinglist",
        "Add recipe products to shopping list",
        method="POST",
    )


async def _handle_add_missing_products_to_shopping_list(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "recipeId", hint=_RECIPE_HINT)
    body = {
        "servings": args.get("servings", 1),
        "shopping_list_id": args.get("shoppingListId", 1),
    }
    return await ctx.call(
        f"/recipes/{args['recipeId']}/add-not-fulfilled-products-to-shoppinglist",
        "Add missing products to shopping list",
        method="POST",
        body=body,
    )


async def _produced_entry(ctx: ToolContext, recipe_id: Any) -> Optional[dict]:
    """Newest stock entry of the product the recipe produces, if any."""
    recipe = (await ctx.client.get(f"/objects/recipes/{recipe_id}")).data or {}
    product_id = recipe.get("product_id")
    if not product_id:
        return None
    entries = (await ctx.client.get(f"/stock/products/{product_id}/entries")).data or []
    if not entries:
        return None
    return max(entries, key=lambda e: int(e.get("id") or 0))


async def _handle_mark_cooked(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "recipeId", hint=_RECIPE_HINT)
    require(args, "servings", hint="Specify the number of servings to consume.")

    recipe_id = args["recipeId"]
    servings = args["servings"]
    portions = args.get("portions")
    search_from = (date.today() - timedelta(days=1)).isoformat()

    try:
        response = await ctx.client.get(
            "/objects/meal_plan", query_params={"query[]": f"day>={search_from}", "limit": 100}
        )
        plan = response.data if isinstance(response.data, list) else []
        candidates = [e for e in plan if str(e.get("recipe_id")) == str(recipe_id)]
        pending = sorted(
            (e for e in candidates if str(e.get("done")) in ("0", "False", "")),
            key=lambda e: str(e.get("day") or ""),
        )
        if not pending:
            return ctx.failure(
                f"No undone meal plan entry found for recipe {recipe_id} starting from yesterday ({search_from}). "
                "Recipe must be planned in meal plan before marking as cooked.",
                {"recipeId": recipe_id, "searchFrom": search_from, "availableEntries": candidates},
            )
        entry = pending[0]

        await ctx.client.put(f"/objects/meal_plan/{entry['id']}", body={**entry, "done": 1})
        consumed = await ctx.client.post(f"/recipes/{recipe_id}/consume", body={"servings": servings})
    except ApiError as e:
        logger.error(f"Error marking recipe {recipe_id} as cooked: {e}")
        return ctx.failure(f"Failed to mark recipe as cooked: {e}", {"recipeId": recipe_id, "servings": servings})

    result: dict[str, Any] = {
        "message": f"Recipe {recipe_id} marked as cooked ({servings} servings consumed), meal plan entry marked as done",
        "recipeId": recipe_id,
        "servings": servings,
        "mealPlanEntry": {"id": entry["id"], "day": entry.get("day"), "marked": True},
        "consumptionResult": consumed.data,
    }
    warnings = []

    if portions or ctx.option("print_label"):
        try:
            produced = await _produced_entry(ctx, recipe_id)
        except ApiError as e:
            produced = None
            warnings.append(f"Could not look up the produced stock entry: {e}")

        if produced is None and not warnings:
            warnings.append(f"Recipe {recipe_id} has no produced stock entry to portion or label")

        if produced and portions:
            try:
                amounts = proportional_amounts(float(produced.get("amount") or 0), int(portions))
                split = await split_stock_entry(ctx.client, produced, amounts)
                result["portions"] = split.to_dict()
                if not split.complete:
                    warnings.append("The produced stock entry was only partially split")
            except (ValueError, ApiError) as e:
                warnings.append(f"Could not split the produced stock entry: {e}")

        if produced and ctx.option("print_label"):
            try:
                await ctx.client.get(f"/stock/entry/{produced['id']}/printlabel")
                result["labelPrinted"] = True
            except ApiError as e:
                warnings.append(f"Label printing failed: {e}")

    if warnings:
        result["warnings"] = warnings
    return ctx.success(result)
