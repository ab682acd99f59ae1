"""Small built-in tools: echo, clock, and addition."""

from typing import Any

from .base import Tool, ToolContext


class EchoTool(Tool):
    """Echoes the message back."""

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo back the provided message."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "The message to echo back."},
            },
            "required": ["message"],
            "additionalProperties": False,
        }

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        message = args["message"]
        if ctx.log:
            ctx.log("echo tool invoked", {"message": message})
        return {"message": message}


class CurrentTimeTool(Tool):
    """Reports the current time from the context clock."""

    @property
    def name(self) -> str:
        return "get_current_time"

    @property
    def description(self) -> str:
        return "Get the current time in ISO 8601 format."

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "additionalProperties": False}

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        iso = ctx.now().isoformat()
        if ctx.log:
            ctx.log("get_current_time tool invoked", {"iso": iso})
        return {"iso": iso}


class AddNumbersTool(Tool):
    """Adds two numbers."""

    @property
    def name(self) -> str:
        return "add_numbers"

    @property
    def description(self) -> str:
        return "Add two numbers and return the result."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "a": {"type": "number", "description": "First addend."},
                "b": {"type": "number", "description": "Second addend."},
            },
            "required": ["a", "b"],
            "additionalProperties": False,
        }

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
        a, b = args["a"], args["b"]
        total = a + b
        if ctx.log:
            ctx.log("add_numbers tool invoked", {"a": a, "b": b, "sum": total})
        return {"a": a, "b": b, "sum": total}


def default_tools() -> list[Tool]:
    """The tool set the CLI runs with."""
    return [EchoTool(), CurrentTimeTool(), AddNumbersTool()]
