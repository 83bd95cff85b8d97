"""Meal plan tools.

``get_meal_plan`` resolves each entry's recipe and section concurrently.
A lookup that fails leaves the entry in the result with an ``errors`` note
instead of failing the whole listing.
"""

import asyncio
import logging
from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from . import ToolModule
from ..config import Settings
from .helpers import EMPTY_SCHEMA, ToolContext, require
from ..grocy_client import ApiError

logger = logging.getLogger("grocy-mcp")


def register(options: Optional[dict[str, dict[str, bool]]] = None, settings: Optional[Settings] = None) -> ToolModule:
    tools = [
        Tool(
            name="get_meal_plan",
            description="Get meal plan entries with their recipe names and sections, optionally within a date range.",
            inputSchema={
                "type": "object",
                "properties": {
                    "startDate": {"type": "string", "description": "First day to include, YYYY-MM-DD (optional)"},
                    "endDate": {"type": "string", "description": "Last day to include, YYYY-MM-DD (optional)"},
                },
                "required": [],
            },
        ),
        Tool(
            name="get_meal_plan_sections",
            description="Get all meal plan sections (e.g. breakfast, lunch, dinner).",
            inputSchema=EMPTY_SCHEMA,
        ),
        Tool(
            name="add_recipe_to_meal_plan",
            description="Plan a recipe for a day. Use get_recipes for recipe IDs and get_meal_plan_sections for section IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "recipeId": {"type": "number", "description": "ID of the recipe to plan."},
                    "day": {"type": "string", "description": "Day in YYYY-MM-DD format."},
                    "servings": {"type": "number", "description": "Number of servings (default: 1)"},
                    "sectionId": {"type": "number", "description": "Meal plan section ID (optional)"},
                    "note": {"type": "string", "description": "Optional note"},
                },
                "required": ["recipeId", "day"],
            },
        ),
        Tool(
            name="delete_recipe_from_meal_plan",
            description="Remove an entry from the meal plan. Use get_meal_plan to find entry IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "mealPlanEntryId": {"type": "number", "description": "ID of the meal plan entry to remove."},
                },
                "required": ["mealPlanEntryId"],
            },
        ),
    ]

    handlers = {
        "get_meal_plan": _handle_get_meal_plan,
        "get_meal_plan_sections": _handle_get_meal_plan_sections,
        "add_recipe_to_meal_plan": _handle_add_recipe_to_meal_plan,
        "delete_recipe_from_meal_plan": _handle_delete_recipe_from_meal_plan,
    }

    return ToolModule(tools=tools, handlers=handlers)


async def _handle_get_meal_plan(ctx: ToolContext, args: dict) -> CallToolResult:
    filters = []
    if args.get("startDate"):
        filters.append(f"day>={args['startDate']}")
    if args.get("endDate"):
        filters.append(f"day<={args['endDate']}")
    query = {"query[]": filters} if filters else None

    try:
        response = await ctx.client.get("/objects/meal_plan", query_params=query)
    except ApiError as e:
        logger.error(f"Error in Get meal plan: {e}")
        return ctx.failure(f"Failed to get meal plan: {e}")
    entries = response.data if isinstance(response.data, list) else []

    recipe_ids = sorted({e["recipe_id"] for e in entries if e.get("recipe_id")}, key=str)
    fetched = await asyncio.gather(
        ctx.client.get("/objects/meal_plan_sections"),
        *(ctx.client.get(f"/objects/recipes/{rid}") for rid in recipe_ids),
        return_exceptions=True,
    )
    sections_result, recipe_results = fetched[0], fetched[1:]

    sections: dict[str, Any] = {}
    sections_error = None
    if isinstance(sections_result, Exception):
        sections_error = f"section lookup failed: {sections_result}"
    else:
        sections = {str(s.get("id")): s.get("name") for s in (sections_result.data or [])}

    recipes: dict[str, Any] = {}
    for rid, outcome in zip(recipe_ids, recipe_results):
        recipes[str(rid)] = outcome

    plan = []
    for entry in entries:
        item = dict(entry)
        errors = []
        rid = entry.get("recipe_id")
        if rid:
            outcome = recipes.get(str(rid))
            if isinstance(outcome, Exception):
                errors.append(f"recipe {rid} lookup failed: {outcome}")
            else:
                item["recipe_name"] = (outcome.data or {}).get("name")
        if entry.get("section_id"):
            if sections_error:
                errors.append(sections_error)
            else:
                item["section_name"] = sections.get(str(entry["section_id"]))
        if errors:
            item["errors"] = errors
        plan.append(item)

    return ctx.success(plan)


async def _handle_get_meal_plan_sections(ctx: ToolContext, args: dict) -> CallToolResult:
    return await ctx.call("/objects/meal_plan_sections", "Get meal plan sections")


async def _handle_add_recipe_to_meal_plan(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "recipeId", hint="Use get_recipes tool to find recipe IDs.")
    require(args, "day")
    body: dict[str, Any] = {
        "day": args["day"],
        "type": "recipe",
        "recipe_id": args["recipeId"],
        "recipe_servings": args.get("servings", 1),
    }
    if args.get("sectionId"):
        body["section_id"] = args["sectionId"]
    if args.get("note"):
        body["note"] = args["note"]
    return await ctx.call("/objects/meal_plan", "Add recipe to meal plan", method="POST", body=body)


async def _handle_delete_recipe_from_meal_plan(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "mealPlanEntryId", hint="Use get_meal_plan tool to find entry IDs.")
    return await ctx.call(
        f"/objects/meal_plan/{args['mealPlanEntryId']}", "Delete recipe from meal plan", method="DELETE"
    )
