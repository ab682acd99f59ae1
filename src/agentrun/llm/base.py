"""Provider-agnostic model-calling interface.

This module defines:
- Role / message dataclasses: the conversation history the loop keeps
- ToolCall: an action requested by the assistant
- ChatParams / ChatResponse: one blocking model call
- StreamChunk: one notification of a streamed model call
- LLMClient / StreamingLLMClient: the capability the agent loop depends on
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable

from ..tools.base import ToolDefinition


class Role(Enum):
    """Author of a message in the conversation history."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool call as returned by the model.

    ``arguments`` is the raw JSON text; the agent loop parses it.
    """

    id: str
    name: str
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass
class SystemMessage:
    content: str
    role: Role = field(default=Role.SYSTEM, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class UserMessage:
    content: str
    role: Role = field(default=Role.USER, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}


@dataclass
class AssistantMessage:
    """Message emitted by the model; may request tool calls."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    role: Role = field(default=Role.ASSISTANT, init=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        return data


@dataclass
class ToolMessage:
    """Result of a tool call fed back to the model."""

    content: str
    tool_call_id: str
    role: Role = field(default=Role.TOOL, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "tool_call_id": self.tool_call_id,
        }


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage]


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ChatParams:
    """Parameters for a single chat call.

    ``tool_choice`` is "auto", "none", or the name of a tool to force.
    """

    model: str
    messages: list[Message]
    tools: list[ToolDefinition] = field(default_factory=list)
    tool_choice: str = "auto"
    temperature: float | None = None
    max_tokens: int | None = None
    timeout_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatResponse:
    """Normalized response of a blocking chat call.

    ``message`` may have any role; the loop checks it.
    """

    message: Message
    usage: TokenUsage | None = None
    raw: Any = None


@dataclass
class StreamChunk:
    """One notification of a streamed chat call.

    Exactly the last chunk of a stream has ``done=True`` and carries the
    complete assistant message.
    """

    content_delta: str | None = None
    reasoning_delta: str | None = None
    done: bool = False
    message: Message | None = None
    usage: TokenUsage | None = None


@runtime_checkable
class LLMClient(Protocol):
    """Capability the agent loop uses to call a model."""

    async def chat(self, params: ChatParams) -> ChatResponse:
        """Run one blocking chat call."""
        ...


@runtime_checkable
class StreamingLLMClient(LLMClient, Protocol):
    """An LLMClient that can also stream its response."""

    def chat_stream(self, params: ChatParams) -> AsyncIterator[StreamChunk]:
        """Stream a chat call as a sequence of chunks."""
        ...
