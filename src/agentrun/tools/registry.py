"""Tool registry for managing and dispatching tools."""

import asyncio
import time
import traceback
from typing import Any

from .base import (
    Tool,
    ToolContext,
    ToolDefinition,
    ToolError,
    ToolErrorType,
    ToolInvocation,
    ToolResult,
)


class ToolRegistry:
    """Registry for available tools.

    Also acts as the tool executor for the agent loop: ``execute`` runs a
    whole batch of invocations concurrently and returns results in
    invocation order.
    """

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool by name."""
        if name in self._tools:
            del self._tools[name]

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def definitions(self) -> list[ToolDefinition]:
        """Get definitions for all tools (the catalog sent to the model)."""
        return [tool.definition() for tool in self._tools.values()]

    async def execute_one(self, invocation: ToolInvocation, ctx: ToolContext) -> ToolResult:
        """Execute a single invocation, converting every failure into a result."""
        started_at = ctx.now()
        start = time.monotonic()

        def finish(*, data: Any = None, error: ToolError | None = None) -> ToolResult:
            return ToolResult(
                call_id=invocation.call_id,
                tool_name=invocation.tool_name,
                ok=error is None,
                data=data,
                error=error,
                started_at=started_at,
                finished_at=ctx.now(),
                duration_ms=(time.monotonic() - start) * 1000,
            )

        tool = self._tools.get(invocation.tool_name)
        if tool is None:
            return finish(error=ToolError(
                type=ToolErrorType.NOT_FOUND,
                message=f"Tool '{invocation.tool_name}' is not registered",
            ))

        args = invocation.args
        if not isinstance(args, dict):
            return finish(error=ToolError(
                type=ToolErrorType.VALIDATION,
                message="Tool arguments must be a JSON object",
            ))

        # Validate arguments
        valid, message = tool.validate_args(args)
        if not valid:
            details = {"raw_arguments": args["_raw"]} if "_raw" in args else None
            return finish(error=ToolError(
                type=ToolErrorType.VALIDATION,
                message=message or "Invalid arguments",
                details=details,
            ))

        timeout_ms = tool.timeout_ms if tool.timeout_ms is not None else ctx.timeout_ms

        # Execute tool
        try:
            if timeout_ms is None:
                data = await tool.execute(args, ctx)
            else:
                task = asyncio.ensure_future(tool.execute(args, ctx))
                try:
                    data = await asyncio.wait_for(asyncio.shield(task), timeout_ms / 1000)
                except asyncio.TimeoutError:
                    if task.done():
                        # Raised by the tool itself, not by the deadline
                        raise
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)
                    return finish(error=ToolError(
                        type=ToolErrorType.EXECUTION,
                        message=f"Tool '{tool.name}' timed out after {timeout_ms} ms",
                        retryable=True,
                    ))
                except asyncio.CancelledError:
                    task.cancel()
                    raise
        except Exception as e:
            return finish(error=ToolError(
                type=ToolErrorType.EXECUTION,
                message=str(e) or e.__class__.__name__,
                details={"traceback": traceback.format_exc()},
            ))

        return finish(data=data)

    async def execute(
        self, invocations: list[ToolInvocation], ctx: ToolContext
    ) -> list[ToolResult]:
        """Execute all invocations concurrently and wait for every one of them."""
        outcomes = await asyncio.gather(
            *(self.execute_one(invocation, ctx) for invocation in invocations),
            return_exceptions=True,
        )

        results: list[ToolResult] = []
        for invocation, outcome in zip(invocations, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                now = ctx.now()
                outcome = ToolResult(
                    call_id=invocation.call_id,
                    tool_name=invocation.tool_name,
                    ok=False,
                    error=ToolError(
                        type=ToolErrorType.INTERNAL,
                        message=f"Tool dispatch failed: {outcome}",
                    ),
                    started_at=now,
                    finished_at=now,
                )
            results.append(outcome)
        return results
