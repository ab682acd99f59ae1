"""Tool registry and tool implementations."""

from .base import (
    Tool,
    ToolContext,
    ToolDefinition,
    ToolError,
    ToolErrorType,
    ToolInvocation,
    ToolResult,
)
from .basic import AddNumbersTool, CurrentTimeTool, EchoTool, default_tools
from .registry import ToolRegistry

__all__ = [
    "AddNumbersTool",
    "CurrentTimeTool",
    "EchoTool",
    "Tool",
    "ToolContext",
    "ToolDefinition",
    "ToolError",
    "ToolErrorType",
    "ToolInvocation",
    "ToolRegistry",
    "ToolResult",
    "default_tools",
]
