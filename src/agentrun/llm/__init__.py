"""Model-calling capability and its Groq implementation."""

from .base import (
    AssistantMessage,
    ChatParams,
    ChatResponse,
    LLMClient,
    Message,
    Role,
    StreamChunk,
    StreamingLLMClient,
    SystemMessage,
    TokenUsage,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from .groq_client import GroqLLMClient, ModelClientError

__all__ = [
    "AssistantMessage",
    "ChatParams",
    "ChatResponse",
    "GroqLLMClient",
    "LLMClient",
    "Message",
    "ModelClientError",
    "Role",
    "StreamChunk",
    "StreamingLLMClient",
    "SystemMessage",
    "TokenUsage",
    "ToolCall",
    "ToolMessage",
    "UserMessage",
]
