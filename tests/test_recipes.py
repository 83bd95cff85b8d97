"""
Tests for the recipe tools.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from grocy_mcp.dispatch import ToolDispatcher

COOKED = "mark_recipe_from_meal_plan_entry_as_cooked"

MEAL_PLAN = [
    {"id": 30, "day": "2026-10-21", "recipe_id": 4, "done": 0},
    {"id": 31, "day": "2026-10-19", "recipe_id": 4, "done": 0},
    {"id": 32, "day": "2026-10-18", "recipe_id": 4, "done": 1},
    {"id": 33, "day": "2026-10-18", "recipe_id": 9, "done": 0},
]

PRODUCED = [
    {"id": 56, "product_id": 12, "stock_id": "a", "amount": 1, "note": ""},
    {"id": 57, "product_id": 12, "stock_id": "b", "amount": 2, "note": "Soup", "location_id": 3},
]


def _text(result) -> str:
    return result.content[0].text


def _cooked_grocy(grocy, meal_plan=MEAL_PLAN, recipe=None):
    grocy.add("GET", "/api/objects/meal_plan", json=meal_plan)
    grocy.add("PUT", "/api/objects/meal_plan/31", json={})
    grocy.add("POST", "/api/recipes/4/consume", json={})
    grocy.add("GET", "/api/objects/recipes/4", json=recipe if recipe is not None else {"id": 4, "product_id": 12})
    grocy.add("GET", "/api/stock/products/12/entries", json=PRODUCED)


class TestShoppingList:
    """Test adding recipe products to the shopping list."""

    @pytest.mark.anyio
    async def test_missing_products_with_servings_and_list(self, make_context, grocy):
        """Test servings and the shopping list id are posted as the body."""
        grocy.add("POST", "/api/recipes/4/add-not-fulfilled-products-to-shoppinglist", json={})
        dispatcher = ToolDispatcher(make_context(TOOL__add_missing_products_to_shopping_list="true"))

        result = await dispatcher.call_tool(
            "add_missing_products_to_shopping_list", {"recipeId": 4, "servings": 3, "shoppingListId": 2},
        )

        assert not result.isError
        assert json.loads(grocy.requests[0].content) == {"servings": 3, "shopping_list_id": 2}

    @pytest.mark.anyio
    async def test_missing_products_defaults(self, make_context, grocy):
        """Test one serving on list 1 is the default."""
        grocy.add("POST", "/api/recipes/4/add-not-fulfilled-products-to-shoppinglist", json={})
        dispatcher = ToolDispatcher(make_context(TOOL__add_missing_products_to_shopping_list="true"))

        await dispatcher.call_tool("add_missing_products_to_shopping_list", {"recipeId": 4})

        assert json.loads(grocy.requests[0].content) == {"servings": 1, "shopping_list_id": 1}


class TestMarkCooked:
    """Test marking a planned recipe as cooked."""

    @pytest.mark.anyio
    async def test_no_undone_entry(self, make_context, grocy):
        """Test nothing is consumed when the recipe has no pending meal plan entry."""
        grocy.add("GET", "/api/objects/meal_plan", json=[MEAL_PLAN[2], MEAL_PLAN[3]])
        dispatcher = ToolDispatcher(make_context(**{f"TOOL__{COOKED}": "true"}))

        result = await dispatcher.call_tool(COOKED, {"recipeId": 4, "servings": 2})

        assert result.isError
        assert "No undone meal plan entry found for recipe 4" in _text(result)
        assert grocy.calls() == [("GET", "/api/objects/meal_plan")]

    @pytest.mark.anyio
    async def test_marks_earliest_pending_entry(self, make_context, grocy):
        """Test the earliest undone entry is marked done and the servings consumed."""
        _cooked_grocy(grocy)
        dispatcher = ToolDispatcher(make_context(**{f"TOOL__{COOKED}": "true"}))

        result = await dispatcher.call_tool(COOKED, {"recipeId": 4, "servings": 2})

        assert not result.isError
        assert grocy.calls() == [
            ("GET", "/api/objects/meal_plan"),
            ("PUT", "/api/objects/meal_plan/31"),
            ("POST", "/api/recipes/4/consume"),
        ]
        assert json.loads(grocy.requests[1].content)["done"] == 1
        assert json.loads(grocy.requests[2].content) == {"servings": 2}
        data = json.loads(_text(result))
        assert data["mealPlanEntry"]["id"] == 31
        assert "warnings" not in data

    @pytest.mark.anyio
    async def test_portions_split_newest_produced_entry(self, make_context, grocy):
        """Test the newest stock entry of the produced product is split into portions."""
        _cooked_grocy(grocy)
        grocy.add("PUT", "/api/stock/entry/57", json={})
        grocy.add("POST", "/api/stock/products/12/add", json=[{"id": 58}])
        dispatcher = ToolDispatcher(make_context(**{f"TOOL__{COOKED}": "true"}))

        result = await dispatcher.call_tool(COOKED, {"recipeId": 4, "servings": 2, "portions": 2})

        data = json.loads(_text(result))
        assert data["portions"]["complete"] is True
        assert data["portions"]["entry_id"] == 57
        update = json.loads(grocy.requests[-2].content)
        assert update["amount"] == 1.0
        assert update["note"] == "Soup #57-1"
        assert json.loads(grocy.requests[-1].content)["note"] == "Soup #57-2"
        assert ("GET", "/api/stock/entry/57/printlabel") not in grocy.calls()

    @pytest.mark.anyio
    async def test_print_label_option(self, make_context, grocy):
        """Test the print_label option prints a label for the produced entry."""
        _cooked_grocy(grocy)
        grocy.add("GET", "/api/stock/entry/57/printlabel", json={})
        dispatcher = ToolDispatcher(make_context(**{
            f"TOOL__{COOKED}": "true", f"TOOL__{COOKED}__print_label": "true",
        }))

        result = await dispatcher.call_tool(COOKED, {"recipeId": 4, "servings": 2})

        assert json.loads(_text(result))["labelPrinted"] is True
        assert grocy.calls()[-1] == ("GET", "/api/stock/entry/57/printlabel")

    @pytest.mark.anyio
    async def test_label_failure_is_a_warning(self, make_context, grocy):
        """Test a failed label print leaves the cooked result successful."""
        _cooked_grocy(grocy)
        grocy.add("GET", "/api/stock/entry/57/printlabel", status=500, json={"error_message": "no printer"})
        dispatcher = ToolDispatcher(make_context(**{
            f"TOOL__{COOKED}": "true", f"TOOL__{COOKED}__print_label": "true",
        }))

        result = await dispatcher.call_tool(COOKED, {"recipeId": 4, "servings": 2})

        assert not result.isError
        data = json.loads(_text(result))
        assert "labelPrinted" not in data
        assert data["warnings"][0].startswith("Label printing failed")

    @pytest.mark.anyio
    async def test_failed_portion_is_a_warning(self, make_context, grocy):
        """Test a partially split entry is reported as a warning."""
        _cooked_grocy(grocy)
        grocy.add("PUT", "/api/stock/entry/57", json={})
        grocy.add("POST", "/api/stock/products/12/add", status=500, json={"error_message": "boom"})
        dispatcher = ToolDispatcher(make_context(**{f"TOOL__{COOKED}": "true"}))

        result = await dispatcher.call_tool(COOKED, {"recipeId": 4, "servings": 2, "portions": 2})

        assert not result.isError
        data = json.loads(_text(result))
        assert data["portions"]["complete"] is False
        assert "only partially split" in data["warnings"][0]

    @pytest.mark.anyio
    async def test_recipe_without_product(self, make_context, grocy):
        """Test portions for a recipe that produces nothing become a warning."""
        _cooked_grocy(grocy, recipe={"id": 4, "product_id": None})
        dispatcher = ToolDispatcher(make_context(**{f"TOOL__{COOKED}": "true"}))

        result = await dispatcher.call_tool(COOKED, {"recipeId": 4, "servings": 2, "portions": 3})

        assert not result.isError
        data = json.loads(_text(result))
        assert "portions" not in data
        assert "no produced stock entry" in data["warnings"][0]
        assert grocy.calls("PUT") == [("PUT", "/api/objects/meal_plan/31")]
