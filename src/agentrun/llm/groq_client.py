"""Groq implementation of the LLMClient Protocol.

Translates the loop's message and tool types into the chat-completions wire
format and back, for both blocking and streamed calls.
"""

import os
from collections.abc import AsyncIterator
from typing import Any

from groq import AsyncGroq

from ..tools.base import ToolDefinition
from .base import (
    AssistantMessage,
    ChatParams,
    ChatResponse,
    Message,
    Role,
    StreamChunk,
    TokenUsage,
    ToolCall,
)


class ModelClientError(RuntimeError):
    """Raised when the provider returns something we cannot interpret."""


def to_wire_message(message: Message) -> dict[str, Any]:
    """Convert a history message into the chat-completions shape."""
    if message.role == Role.TOOL:
        return {
            "role": "tool",
            "content": message.content,
            "tool_call_id": message.tool_call_id,
        }

    if message.role == Role.ASSISTANT:
        data: dict[str, Any] = {"role": "assistant", "content": message.content}
        if message.tool_calls:
            data["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": tc.arguments},
                }
                for tc in message.tool_calls
            ]
        return data

    if message.role in (Role.SYSTEM, Role.USER):
        return {"role": message.role.value, "content": message.content}

    raise ValueError(f"Unsupported message role: {message.role}")


def to_wire_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]] | None:
    """Convert tool definitions into function-calling schemas."""
    if not tools:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


def to_wire_tool_choice(tool_choice: str) -> str | dict[str, Any]:
    if tool_choice in ("auto", "none", "required"):
        return tool_choice
    return {"type": "function", "function": {"name": tool_choice}}


def from_wire_message(message: Any) -> AssistantMessage:
    """Normalize an SDK assistant message."""
    tool_calls = [
        ToolCall(
            id=tc.id or "",
            name=tc.function.name,
            arguments=tc.function.arguments or "",
        )
        for tc in (message.tool_calls or [])
        if tc is not None and tc.function is not None
    ]
    content = message.content if isinstance(message.content, str) else ""
    return AssistantMessage(content=content, tool_calls=tool_calls)


def from_wire_usage(usage: Any) -> TokenUsage | None:
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
    )


class GroqLLMClient:
    """LLMClient implementation that wraps AsyncGroq.

    Example:
        from agentrun.llm import GroqLLMClient

        llm = GroqLLMClient(api_key="...")
        response = await llm.chat(ChatParams(model="llama-3.1-70b-versatile", messages=[...]))
    """

    def __init__(self, client: AsyncGroq | None = None, api_key: str | None = None) -> None:
        """Initialize the Groq client wrapper.

        Args:
            client: An AsyncGroq instance to wrap. Created from ``api_key``
                (or ``GROQ_API_KEY``) when omitted.
            api_key: API key used when no client is given.
        """
        self._client = client or AsyncGroq(api_key=api_key or os.getenv("GROQ_API_KEY"))

    def _request_kwargs(self, params: ChatParams) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": params.model,
            "messages": [to_wire_message(m) for m in params.messages],
        }
        tools = to_wire_tools(params.tools)
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = to_wire_tool_choice(params.tool_choice)
        if params.temperature is not None:
            kwargs["temperature"] = params.temperature
        if params.max_tokens is not None:
            kwargs["max_tokens"] = params.max_tokens
        if params.timeout_ms is not None:
            kwargs["timeout"] = params.timeout_ms / 1000
        return kwargs

    async def chat(self, params: ChatParams) -> ChatResponse:
        """Run one blocking chat completion.

        Raises:
            ModelClientError: If the response carries no choices.
        """
        response = await self._client.chat.completions.create(**self._request_kwargs(params))

        if not response.choices or response.choices[0].message is None:
            raise ModelClientError("No choices returned from chat.completions.create")

        return ChatResponse(
            message=from_wire_message(response.choices[0].message),
            usage=from_wire_usage(getattr(response, "usage", None)),
            raw=response,
        )

    async def chat_stream(self, params: ChatParams) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion.

        Yields one chunk per content or reasoning delta, then a single final
        chunk with ``done=True`` and the assembled assistant message. Tool
        call fragments are accumulated by their index.
        """
        stream = await self._client.chat.completions.create(
            **self._request_kwargs(params), stream=True
        )

        content_parts: list[str] = []
        calls: dict[int, dict[str, str]] = {}
        usage: TokenUsage | None = None

        async for chunk in stream:
            chunk_usage = getattr(chunk, "usage", None)
            x_groq = getattr(chunk, "x_groq", None)
            if chunk_usage is None and x_groq is not None:
                chunk_usage = getattr(x_groq, "usage", None)
            if chunk_usage is not None:
                usage = from_wire_usage(chunk_usage)

            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            reasoning = getattr(delta, "reasoning", None)
            if reasoning:
                yield StreamChunk(reasoning_delta=reasoning)

            if delta.content:
                content_parts.append(delta.content)
                yield StreamChunk(content_delta=delta.content)

            for fragment in delta.tool_calls or []:
                call = calls.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    call["id"] = fragment.id
                if fragment.function is not None:
                    if fragment.function.name:
                        call["name"] += fragment.function.name
                    if fragment.function.arguments:
                        call["arguments"] += fragment.function.arguments

        message = AssistantMessage(
            content="".join(content_parts),
            tool_calls=[ToolCall(**calls[index]) for index in sorted(calls)],
        )
        yield StreamChunk(done=True, message=message, usage=usage)
