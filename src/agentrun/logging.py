"""JSONL logging for observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    run_id: str | None = None
    step_id: str | None = None
    tool_name: str | None = None
    call_id: str | None = None
    duration_ms: float | None = None
    stopped_reason: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured logs in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "logs.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".agentrun" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self._current_run_id: str | None = None

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def set_run_id(self, run_id: str | None) -> None:
        """Set the current run_id for all subsequent logs."""
        self._current_run_id = run_id

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        run_id: str | None = None,
        step_id: str | None = None,
        tool_name: str | None = None,
        call_id: str | None = None,
        duration_ms: float | None = None,
        stopped_reason: str | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            run_id=run_id or self._current_run_id,
            step_id=step_id,
            tool_name=tool_name,
            call_id=call_id,
            duration_ms=duration_ms,
            stopped_reason=stopped_reason,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_model_call(
        self,
        step_id: str,
        *,
        run_id: str | None = None,
        model: str | None = None,
        messages_count: int | None = None,
        tool_calls_count: int = 0,
        error: str | None = None,
    ) -> None:
        """Log a model call step."""
        self.log(
            "model_call",
            run_id=run_id,
            step_id=step_id,
            error=error,
            model=model,
            messages_count=messages_count,
            tool_calls_count=tool_calls_count,
        )

    def log_tool_call(
        self,
        tool_name: str,
        args: Any,
        *,
        call_id: str | None = None,
        run_id: str | None = None,
    ) -> None:
        """Log a tool call."""
        self.log(
            "tool_call",
            run_id=run_id,
            tool_name=tool_name,
            call_id=call_id,
            tool_args=args,
        )

    def log_tool_result(
        self,
        tool_name: str,
        success: bool,
        *,
        call_id: str | None = None,
        run_id: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
    ) -> None:
        """Log a tool result."""
        self.log(
            "tool_result",
            run_id=run_id,
            tool_name=tool_name,
            call_id=call_id,
            duration_ms=duration_ms,
            error=error if not success else None,
            success=success,
        )

    def log_run_stop(
        self,
        reason: str,
        *,
        run_id: str | None = None,
        status: str | None = None,
        steps: int | None = None,
        tool_calls_total: int | None = None,
        error: str | None = None,
    ) -> None:
        """Log when the agent loop stops."""
        self.log(
            "run_stop",
            run_id=run_id,
            stopped_reason=reason,
            error=error,
            status=status,
            steps=steps,
            tool_calls_total=tool_calls_total,
        )

    def tool_log(self, message: str, fields: dict[str, Any] | None = None) -> None:
        """Log a message emitted by a tool (the ToolContext.log hook)."""
        self.log("tool_log", message=message, fields=fields or {})


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
