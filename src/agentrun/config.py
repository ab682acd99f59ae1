"""Application configuration loaded from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .agent.loop import DEFAULT_MODEL
from .agent.state import AgentConfig

DEFAULT_TASK_DESCRIPTION = (
    "You are a demo agent. Say hello, then (optionally) use tools to show what you can do."
)


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


@dataclass
class AppConfig:
    """Process-level settings for the CLI."""

    model: str = DEFAULT_MODEL
    api_key: str | None = None
    max_steps: int = 8
    max_tool_calls: int | None = 6
    model_call_timeout_ms: int = 60_000
    tool_call_timeout_ms: int = 10_000
    log_dir: Path | None = None
    transcript_dir: Path = field(default_factory=lambda: Path.cwd() / "logs")
    default_task_description: str = DEFAULT_TASK_DESCRIPTION

    def agent_config(self, **overrides: Any) -> AgentConfig:
        """Build the per-run AgentConfig, applying any non-None overrides."""
        values: dict[str, Any] = {
            "max_steps": self.max_steps,
            "max_tool_calls": self.max_tool_calls,
            "model_call_timeout_ms": self.model_call_timeout_ms,
            "tool_call_timeout_ms": self.tool_call_timeout_ms,
            "allow_no_tool_answer": True,
            "metadata": {"model": self.model},
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return AgentConfig(**values)


def load_config() -> AppConfig:
    """Load configuration from environment variables."""
    log_dir = os.getenv("AGENTRUN_LOG_DIR")
    transcript_dir = os.getenv("AGENTRUN_TRANSCRIPT_DIR")

    return AppConfig(
        model=os.getenv("GROQ_MODEL", DEFAULT_MODEL),
        api_key=os.getenv("GROQ_API_KEY"),
        max_steps=_int_from_env("AGENTRUN_MAX_STEPS", 8),
        max_tool_calls=_int_from_env("AGENTRUN_MAX_TOOL_CALLS", 6),
        model_call_timeout_ms=_int_from_env("AGENTRUN_MODEL_TIMEOUT_MS", 60_000),
        tool_call_timeout_ms=_int_from_env("AGENTRUN_TOOL_TIMEOUT_MS", 10_000),
        log_dir=Path(log_dir) if log_dir else None,
        transcript_dir=Path(transcript_dir) if transcript_dir else Path.cwd() / "logs",
    )
