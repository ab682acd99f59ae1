"""Base tool interface and the records exchanged with the agent loop."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

ToolLog = Callable[[str, dict[str, Any]], None]


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


@dataclass
class ToolDefinition:
    """LLM-facing description of a tool."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass
class ToolInvocation:
    """A requested action translated into something the executor can run."""

    call_id: str
    tool_name: str
    args: Any

    def to_dict(self) -> dict[str, Any]:
        return {"call_id": self.call_id, "tool_name": self.tool_name, "args": self.args}


class ToolErrorType(Enum):
    """Classification of a failed tool invocation."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    EXECUTION = "execution"
    INTERNAL = "internal"


@dataclass
class ToolError:
    """Structured error attached to a failed ToolResult.

    ``retryable`` is a hint only; nothing retries automatically.
    """

    type: ToolErrorType
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class ToolResult:
    """Outcome of one tool invocation.

    ``ok`` and ``error`` are mutually exclusive: a failed result always
    carries an error and a successful one never does.
    """

    call_id: str
    tool_name: str
    ok: bool
    data: Any = None
    error: ToolError | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime = field(default_factory=utc_now)
    duration_ms: float = 0.0

    def __post_init__(self) -> None:
        if self.ok and self.error is not None:
            raise ValueError(f"Successful result for '{self.call_id}' must not carry an error")
        if not self.ok and self.error is None:
            raise ValueError(f"Failed result for '{self.call_id}' must carry an error")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "ok": self.ok,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": self.duration_ms,
        }
        if self.ok:
            data["data"] = self.data
        else:
            assert self.error is not None
            data["error"] = self.error.to_dict()
        return data


@dataclass
class ToolContext:
    """Utilities handed to every tool invocation.

    ``log`` is supplied by whoever runs the loop; tools must not assume one
    is present.
    """

    now: Callable[[], datetime] = utc_now
    env: Mapping[str, str] = field(default_factory=dict)
    log: ToolLog | None = None
    timeout_ms: int | None = None


class Tool(ABC):
    """Base interface for all tools."""

    timeout_ms: int | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Tool description for LLM."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""
        ...

    @abstractmethod
    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> Any:
        """Run the tool and return a JSON-serializable payload.

        Raise to signal failure; the registry turns the exception into a
        ToolResult error.
        """
        ...

    def definition(self) -> ToolDefinition:
        """Get the LLM-facing definition of this tool."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def validate_args(self, args: dict[str, Any]) -> tuple[bool, str | None]:
        """Validate arguments against schema. Returns (valid, error_message)."""
        required = self.parameters.get("required", [])
        properties = self.parameters.get("properties", {})

        # Check required fields
        for name in required:
            if name not in args:
                return False, f"Missing required argument: {name}"

        if self.parameters.get("additionalProperties") is False:
            for key in args:
                if key not in properties:
                    return False, f"Unexpected argument: {key}"

        # Check types (basic validation)
        for key, value in args.items():
            if key not in properties:
                continue
            expected_type = properties[key].get("type")
            if expected_type == "string" and not isinstance(value, str):
                return False, f"Argument '{key}' must be a string"
            if expected_type == "integer" and (
                not isinstance(value, int) or isinstance(value, bool)
            ):
                return False, f"Argument '{key}' must be an integer"
            if expected_type == "number" and (
                not isinstance(value, (int, float)) or isinstance(value, bool)
            ):
                return False, f"Argument '{key}' must be a number"
            if expected_type == "boolean" and not isinstance(value, bool):
                return False, f"Argument '{key}' must be a boolean"

        return True, None
