"""Household action tools: chores, tasks, batteries and undo."""

from typing import Any, Optional

from mcp.types import CallToolResult, Tool

from . import ToolModule
from ..config import Settings
from .helpers import ToolContext, require
from ..errors import invalid_params

# entity type -> undo endpoint template
UNDO_ENDPOINTS = {
    "stock": "/stock/transactions/{id}/undo",
    "chore": "/chores/executions/{id}/undo",
    "battery": "/batteries/charge-cycles/{id}/undo",
    "task": "/tasks/{id}/undo",
}


def register(options: Optional[dict[str, dict[str, bool]]] = None, settings: Optional[Settings] = None) -> ToolModule:
    tools = [
        Tool(
            name="track_chore_execution",
            description="Track the execution of a chore. Use get_chores to find chore IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "choreId": {"type": "number", "description": "ID of the chore."},
                    "executedBy": {"type": "number", "description": "ID of the user who did the chore (optional)"},
                    "trackedTime": {"type": "string", "description": "When it was done, YYYY-MM-DD HH:MM:SS (default: now)"},
                },
                "required": ["choreId"],
            },
        ),
        Tool(
            name="complete_task",
            description="Mark a task as completed. Use get_tasks to find task IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "taskId": {"type": "number", "description": "ID of the task."},
                    "doneTime": {"type": "string", "description": "Completion time, YYYY-MM-DD HH:MM:SS (default: now)"},
                },
                "required": ["taskId"],
            },
        ),
        Tool(
            name="charge_battery",
            description="Track a battery charge cycle. Use get_batteries to find battery IDs.",
            inputSchema={
                "type": "object",
                "properties": {
                    "batteryId": {"type": "number", "description": "ID of the battery."},
                    "trackedTime": {"type": "string", "description": "When it was charged, YYYY-MM-DD HH:MM:SS (default: now)"},
                },
                "required": ["batteryId"],
            },
        ),
        Tool(
            name="undo_action",
            description=(
                "Undo a previous action: a stock transaction, a chore execution, a battery charge cycle "
                "or a task completion."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "entityType": {
                        "type": "string",
                        "enum": list(UNDO_ENDPOINTS),
                        "description": "Kind of action to undo.",
                    },
                    "id": {
                        "type": "string",
                        "description": "Transaction ID (stock), execution ID (chore), charge cycle ID (battery) or task ID (task).",
                    },
                },
                "required": ["entityType", "id"],
            },
        ),
    ]

    handlers = {
        "track_chore_execution": _handle_track_chore_execution,
        "complete_task": _handle_complete_task,
        "charge_battery": _handle_charge_battery,
        "undo_action": _handle_undo_action,
    }

    return ToolModule(tools=tools, handlers=handlers)


async def _handle_track_chore_execution(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "choreId", hint="Use get_chores tool to find chore IDs.")
    body: dict[str, Any] = {}
    if args.get("trackedTime"):
        body["tracked_time"] = args["trackedTime"]
    if args.get("executedBy"):
        body["done_by"] = args["executedBy"]
    return await ctx.call(f"/chores/{args['choreId']}/execute", "Track chore execution", method="POST", body=body)


async def _handle_complete_task(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "taskId", hint="Use get_tasks tool to find task IDs.")
    body = {"done_time": args["doneTime"]} if args.get("doneTime") else {}
    return await ctx.call(f"/tasks/{args['taskId']}/complete", "Complete task", method="POST", body=body)


async def _handle_charge_battery(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "batteryId", hint="Use get_batteries tool to find battery IDs.")
    body = {"tracked_time": args["trackedTime"]} if args.get("trackedTime") else {}
    return await ctx.call(f"/batteries/{args['batteryId']}/charge", "Charge battery", method="POST", body=body)


async def _handle_undo_action(ctx: ToolContext, args: dict) -> CallToolResult:
    require(args, "entityType", "id")
    template = UNDO_ENDPOINTS.get(str(args["entityType"]).lower())
    if template is None:
        raise invalid_params(f"entityType must be one of: {', '.join(UNDO_ENDPOINTS)}")
    return await ctx.call(template.format(id=args["id"]), f"Undo {args['entityType']} action", method="POST")
