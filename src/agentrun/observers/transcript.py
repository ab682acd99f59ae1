"""Transcript observer for detailed run analysis.

Writes each finished run to its own JSONL file: a run_start line, one line
per step, and a run_end line.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..agent.state import RunResult, step_to_dict


class TranscriptObserver:
    """Writes complete run transcripts for analysis."""

    def __init__(self, log_dir: Path | str | None = None) -> None:
        """Initialize the transcript observer.

        Args:
            log_dir: Directory to store transcripts. Defaults to ./logs in cwd.
        """
        if log_dir is None:
            log_dir = Path.cwd() / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def transcript_path(self, result: RunResult) -> Path:
        """Get the transcript path for a run."""
        date_str = result.created_at.strftime("%Y-%m-%d")
        return self.log_dir / f"{date_str}_{result.run_id}.jsonl"

    def _entries(self, result: RunResult) -> list[dict[str, Any]]:
        state = result.state
        entries: list[dict[str, Any]] = [{
            "event": "run_start",
            "task": {
                "id": state.task.id,
                "description": state.task.description,
                "input": state.task.input,
            },
            "config": {
                "max_steps": state.config.max_steps,
                "max_tool_calls": state.config.max_tool_calls,
                "model_call_timeout_ms": state.config.model_call_timeout_ms,
                "tool_call_timeout_ms": state.config.tool_call_timeout_ms,
                "metadata": state.config.metadata,
            },
            "available_tools": state.available_tool_names,
            "created_at": result.created_at.isoformat(),
        }]
        entries.extend({"event": "step", **step_to_dict(step)} for step in result.steps)

        summary = result.to_dict()
        del summary["steps"]
        entries.append({"event": "run_end", **summary})
        return entries

    def on_run_finished(self, result: RunResult) -> None:
        written_at = datetime.now(timezone.utc).isoformat()
        with open(self.transcript_path(result), "a", encoding="utf-8") as f:
            for entry in self._entries(result):
                entry["timestamp"] = written_at
                entry["run_id"] = result.run_id
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
