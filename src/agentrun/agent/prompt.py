"""Prompt builder for the agent."""

import json
from typing import Any

from ..tools.base import ToolDefinition, ToolResult

SYSTEM_PROMPT_BASE = """You are a tool-using AI agent.
You must carefully read the user's request, decide whether tools are needed,
and call tools with correct, well-validated arguments when appropriate.
If tools are not needed, answer directly and concisely.

Your task id is "{task_id}".
{tools_section}

General rules:
- Think step-by-step and keep reasoning concise.
- Use tools when they are necessary to complete the task or to fetch up-to-date/structured data.
- Validate tool arguments before calling tools.
- After using tools, reflect on their results and decide the next best action.
- If you cannot complete the task with the available tools and information, explain clearly why."""

TOOLS_REQUIRED_RULE = """
- Do not answer from memory when a tool can answer the question; call the tool first."""


def describe_tools(tools: list[ToolDefinition]) -> str:
    """Render a short, LLM-readable list of the available tools."""
    if not tools:
        return "No tools are available in this run."

    rendered = "\n".join(
        f"- {tool.name}: {tool.description or 'No description provided.'}"
        for tool in tools
    )
    return f"You have access to the following tools:\n{rendered}"


def build_system_prompt(
    task_id: str,
    tools: list[ToolDefinition],
    allow_no_tool_answer: bool = True,
) -> str:
    """Build the system prompt for a run.

    Args:
        task_id: Identifier of the task, quoted to the model.
        tools: Definitions of the tools available in this run.
        allow_no_tool_answer: When False and tools exist, the prompt tells
            the model to use them instead of answering directly.

    Returns:
        Complete system prompt string.
    """
    prompt = SYSTEM_PROMPT_BASE.format(task_id=task_id, tools_section=describe_tools(tools))
    if not allow_no_tool_answer and tools:
        prompt += TOOLS_REQUIRED_RULE
    return prompt


def build_user_prompt(description: str, task_input: Any = None) -> str:
    """Build the initial user message from the task."""
    lines = [f"Task: {description}"]
    if task_input is not None:
        lines += ["", "Structured input:", json.dumps(task_input, indent=2, default=str)]
    return "\n".join(lines)


def format_tool_result(result: ToolResult) -> str:
    """Format a tool result as the content of a tool message."""
    if result.ok:
        return json.dumps(result.data, default=str)
    assert result.error is not None
    return json.dumps({"error": result.error.to_dict()}, indent=2, default=str)
