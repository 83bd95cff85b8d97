"""
Tests for tool dispatch: listing, calling, error classification.
"""

import dataclasses
import json
import sys
from pathlib import Path

import httpx
import pytest
from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, Tool

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import API_KEY
from grocy_mcp.dispatch import ToolDispatcher
from grocy_mcp.policy import ToolPolicy
from grocy_mcp.registry import ToolRegistry
from grocy_mcp.tools import ToolModule
from grocy_mcp.tools.helpers import EMPTY_SCHEMA

PRODUCTS = [{"id": 1, "name": "Milk"}, {"id": 2, "name": "Bread"}]


def _text(result) -> str:
    return result.content[0].text


class TestListTools:
    """Test tool listing under the policy."""

    def test_only_enabled_tools_listed(self, make_context):
        """Test disabled tools are hidden and order is kept."""
        context = make_context(TOOL__get_products="true", TOOL__get_stock="false", TOOL__undo_action="true")
        names = [t.name for t in ToolDispatcher(context).list_tools()]
        assert names == ["get_products", "undo_action"]

    def test_nothing_enabled(self, make_context):
        """Test an empty policy lists nothing."""
        assert ToolDispatcher(make_context()).list_tools() == []

    def test_listing_is_idempotent(self, make_context, grocy):
        """Test repeated listings are equal and never reach upstream."""
        dispatcher = ToolDispatcher(make_context(TOOL__get_stock="true", TOOL__get_products="true"))
        assert dispatcher.list_tools() == dispatcher.list_tools()
        assert grocy.requests == []


class TestCallTool:
    """Test call outcomes."""

    @pytest.mark.anyio
    async def test_success_is_pretty_json(self, make_context, grocy):
        """Test a successful call returns the upstream body pretty-printed."""
        grocy.add("GET", "/api/objects/products", json=PRODUCTS)
        dispatcher = ToolDispatcher(make_context(TOOL__get_products="true"))

        result = await dispatcher.call_tool("get_products", {})

        assert not result.isError
        assert _text(result) == json.dumps(PRODUCTS, indent=2)

    @pytest.mark.anyio
    async def test_field_projection(self, make_context, grocy):
        """Test get_products returns only the requested fields."""
        grocy.add("GET", "/api/objects/products", json=[{"id": 1, "name": "Milk", "description": "long"}])
        dispatcher = ToolDispatcher(make_context(TOOL__get_products="true"))

        result = await dispatcher.call_tool("get_products", {"fields": ["id", "name"]})

        assert json.loads(_text(result)) == [{"id": 1, "name": "Milk"}]

    @pytest.mark.anyio
    async def test_missing_argument_is_invalid_params(self, make_context, grocy):
        """Test a missing required argument fails fast without an upstream call."""
        dispatcher = ToolDispatcher(make_context(TOOL__purchase_product="true"))

        with pytest.raises(McpError) as exc:
            await dispatcher.call_tool("purchase_product", {})

        assert exc.value.error.code == INVALID_PARAMS
        assert "productId" in exc.value.error.message
        assert grocy.requests == []

    @pytest.mark.anyio
    async def test_disabled_tool_is_invalid_request(self, make_context, grocy):
        """Test calling a disabled tool names the variable that enables it."""
        dispatcher = ToolDispatcher(make_context(TOOL__get_stock="false"))

        with pytest.raises(McpError) as exc:
            await dispatcher.call_tool("get_stock", {})

        assert exc.value.error.code == INVALID_REQUEST
        assert "TOOL__get_stock=true" in exc.value.error.message
        assert "get_stock" not in [t.name for t in dispatcher.list_tools()]
        assert grocy.requests == []

    @pytest.mark.anyio
    async def test_unknown_tool_is_method_not_found(self, make_context):
        """Test an unregistered name is method-not-found, even with tools enabled."""
        dispatcher = ToolDispatcher(make_context(TOOL__get_stock="true"))

        with pytest.raises(McpError) as exc:
            await dispatcher.call_tool("launch_rockets", {})

        assert exc.value.error.code == METHOD_NOT_FOUND

    @pytest.mark.anyio
    async def test_timeout_is_error_result(self, make_context, grocy):
        """Test an upstream timeout becomes an error result, not a protocol error."""
        grocy.fail("GET", "/api/stock", httpx.ReadTimeout)
        dispatcher = ToolDispatcher(make_context(TOOL__get_stock="true"))

        result = await dispatcher.call_tool("get_stock", {})

        assert result.isError
        assert "timeout" in _text(result).lower()

    @pytest.mark.anyio
    async def test_upstream_error_never_leaks_api_key(self, make_context, grocy, caplog):
        """Test the API key is redacted even if the upstream echoes it back."""
        grocy.add("GET", "/api/stock", status=500, json={"error_message": f"bad key {API_KEY}"})
        dispatcher = ToolDispatcher(make_context(TOOL__get_stock="true"))

        with caplog.at_level("INFO", logger="grocy-mcp"):
            result = await dispatcher.call_tool("get_stock", {})

        assert result.isError
        assert "API error (500)" in _text(result)
        assert API_KEY not in _text(result)
        assert "bad key ***" in caplog.text
        assert API_KEY not in caplog.text

    @pytest.mark.anyio
    async def test_unexpected_exception_is_internal_error(self, make_context):
        """Test a crashing handler becomes a redacted internal error."""
        async def explode(ctx, args):
            raise RuntimeError(f"kaboom with {API_KEY}")

        module = ToolModule(tools=[Tool(name="explode", inputSchema=EMPTY_SCHEMA)], handlers={"explode": explode})
        context = dataclasses.replace(
            make_context(),
            registry=ToolRegistry([module]),
            policy=ToolPolicy(enabled=frozenset({"explode"})),
        )

        with pytest.raises(McpError) as exc:
            await ToolDispatcher(context).call_tool("explode", {})

        assert exc.value.error.code == INTERNAL_ERROR
        assert "kaboom" in exc.value.error.message
        assert API_KEY not in exc.value.error.message

    @pytest.mark.anyio
    async def test_response_truncated(self, make_context, grocy):
        """Test long responses are cut to the configured size with a marker."""
        grocy.add("GET", "/api/objects/products", json=[{"id": i, "name": f"Product {i}"} for i in range(50)])
        dispatcher = ToolDispatcher(make_context(TOOL__get_products="true", REST_RESPONSE_SIZE_LIMIT="100"))

        text = _text(await dispatcher.call_tool("get_products", {}))

        assert text.startswith("[")
        assert "[truncated: response exceeded 100 characters]" in text
        assert len(text.split("\n... [truncated")[0]) == 100


class TestStockEntryTools:
    """Test tools that target one stock entry."""

    @pytest.mark.anyio
    async def test_consume_from_entry(self, make_context, grocy):
        """Test consume_product checks the entry and sends its stock_id."""
        grocy.add("GET", "/api/stock/entry/57", json={"id": 57, "product_id": 12, "stock_id": "abc", "amount": 3})
        grocy.add("POST", "/api/stock/products/12/consume", json=[{"id": 900}])
        dispatcher = ToolDispatcher(make_context(TOOL__consume_product="true"))

        result = await dispatcher.call_tool("consume_product", {"stockId": 57, "productId": 12, "amount": 1})

        assert not result.isError
        body = json.loads(grocy.requests[-1].content)
        assert body == {"amount": 1, "transaction_type": "consume", "spoiled": False, "stock_entry_id": "abc"}

    @pytest.mark.anyio
    async def test_entry_of_other_product_refused(self, make_context, grocy):
        """Test a stock entry that belongs to another product is never touched."""
        grocy.add("GET", "/api/stock/entry/57", json={"id": 57, "product_id": 99, "stock_id": "abc", "amount": 3})
        dispatcher = ToolDispatcher(make_context(TOOL__consume_product="true"))

        result = await dispatcher.call_tool("consume_product", {"stockId": 57, "productId": 12, "amount": 1})

        assert result.isError
        assert "belongs to product 99" in _text(result)
        assert grocy.calls("POST") == []

    @pytest.mark.anyio
    async def test_consume_requires_entry_without_fifo(self, make_context):
        """Test stockId is mandatory unless allow_fifo is set."""
        dispatcher = ToolDispatcher(make_context(TOOL__consume_product="true"))

        with pytest.raises(McpError) as exc:
            await dispatcher.call_tool("consume_product", {"productId": 12, "amount": 1})

        assert exc.value.error.code == INVALID_PARAMS
        assert "stockId" in exc.value.error.message

    @pytest.mark.anyio
    async def test_consume_fifo(self, make_context, grocy):
        """Test allow_fifo consumes without naming an entry."""
        grocy.add("POST", "/api/stock/products/12/consume", json=[])
        dispatcher = ToolDispatcher(make_context(
            TOOL__consume_product="true", TOOL__consume_product__allow_fifo="true",
        ))

        result = await dispatcher.call_tool(
            "consume_product", {"productId": 12, "amount": 2, "spoiled": True, "locationId": 4},
        )

        assert not result.isError
        assert grocy.calls() == [("POST", "/api/stock/products/12/consume")]
        body = json.loads(grocy.requests[0].content)
        assert "stock_entry_id" not in body
        assert body["spoiled"] is True
        assert body["transaction_type"] == "consume-spoiled"
        assert body["location_id"] == 4

    @pytest.mark.anyio
    async def test_transfer_uses_entry_location(self, make_context, grocy):
        """Test transfer_product moves from the entry's current location."""
        grocy.add("GET", "/api/stock/entry/8", json={"id": 8, "product_id": 3, "stock_id": "s8", "location_id": 2})
        grocy.add("POST", "/api/stock/products/3/transfer", json=[])
        dispatcher = ToolDispatcher(make_context(TOOL__transfer_product="true"))

        await dispatcher.call_tool("transfer_product", {"stockId": 8, "productId": 3, "amount": 1, "locationIdTo": 5})

        body = json.loads(grocy.requests[-1].content)
        assert body["location_id_from"] == 2
        assert body["location_id_to"] == 5
        assert body["stock_entry_id"] == "s8"


class TestFanOut:
    """Test composite tools degrade per item."""

    @pytest.mark.anyio
    async def test_lookup_product_partial_failure(self, make_context, grocy):
        """Test one failed detail lookup is annotated while the rest succeeds."""
        grocy.add("GET", "/api/objects/products", json=[{"id": 1, "name": "Milk"}, {"id": 2, "name": "Milk powder"}])
        grocy.add("GET", "/api/stock/products/1", json={"stock_amount": 2})
        grocy.add("GET", "/api/stock/products/1/entries", json=[{"id": 10, "amount": 2}])
        grocy.add("GET", "/api/stock/products/2", status=500, json={"error_message": "db locked"})
        grocy.add("GET", "/api/stock/products/2/entries", json=[])
        dispatcher = ToolDispatcher(make_context(TOOL__lookup_product="true"))

        result = await dispatcher.call_tool("lookup_product", {"productName": "milk"})

        assert not result.isError
        matches = {m["id"]: m for m in json.loads(_text(result))["matches"]}
        assert matches[1]["stock_amount"] == 2
        assert matches[1]["stock_entries"][0]["id"] == 10
        assert "errors" not in matches[1]
        assert "details unavailable" in matches[2]["errors"][0]
        assert matches[2]["stock_entries"] == []

    @pytest.mark.anyio
    async def test_meal_plan_partial_failure(self, make_context, grocy):
        """Test a failed recipe lookup leaves the meal plan entry in place."""
        grocy.add("GET", "/api/objects/meal_plan", json=[
            {"id": 1, "day": "2026-10-19", "recipe_id": 4, "section_id": 1},
            {"id": 2, "day": "2026-10-20", "recipe_id": 5, "section_id": 1},
        ])
        grocy.add("GET", "/api/objects/meal_plan_sections", json=[{"id": 1, "name": "Dinner"}])
        grocy.add("GET", "/api/objects/recipes/4", json={"id": 4, "name": "Soup"})
        grocy.add("GET", "/api/objects/recipes/5", status=404, json={"error_message": "gone"})
        dispatcher = ToolDispatcher(make_context(TOOL__get_meal_plan="true"))

        result = await dispatcher.call_tool("get_meal_plan", {})

        plan = json.loads(_text(result))
        assert [e["id"] for e in plan] == [1, 2]
        assert plan[0]["recipe_name"] == "Soup"
        assert plan[0]["section_name"] == "Dinner"
        assert "errors" not in plan[0]
        assert "recipe 5 lookup failed" in plan[1]["errors"][0]
        assert plan[1]["section_name"] == "Dinner"


class TestRawAccess:
    """Test call_grocy_api and test_request."""

    @pytest.mark.anyio
    async def test_call_grocy_api_strips_api_prefix(self, make_context, grocy):
        """Test a leading /api/ in the endpoint is tolerated."""
        grocy.add("GET", "/api/objects/locations", json=[{"id": 1}])
        dispatcher = ToolDispatcher(make_context(TOOL__call_grocy_api="true"))

        result = await dispatcher.call_tool("call_grocy_api", {"endpoint": "/api/objects/locations"})

        assert json.loads(_text(result)) == [{"id": 1}]

    @pytest.mark.anyio
    async def test_test_request_reports_http_errors(self, make_context, grocy):
        """Test test_request describes a failing response instead of failing."""
        grocy.add("GET", "/api/users", status=401, json={"error_message": "unauthorized"})
        dispatcher = ToolDispatcher(make_context(TOOL__test_request="true"))

        result = await dispatcher.call_tool("test_request", {"method": "GET", "endpoint": "/users"})

        report = json.loads(_text(result))
        assert report["response"]["statusCode"] == 401
        assert report["validation"]["isError"] is True
        assert report["request"]["authMethod"] == "apikey"
        assert API_KEY not in _text(result)
