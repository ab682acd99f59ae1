"""Observer that prints run summaries to the terminal."""

import sys
from typing import TextIO

from ..agent.state import RunResult, RunStatus
from ..llm.base import StreamChunk


def format_summary(result: RunResult) -> str:
    """Format the run summary and final answer (or error) for display."""
    reason = result.termination_reason.value if result.termination_reason else "-"
    output = [
        "\n" + "─" * 40,
        f"run:         {result.run_id}",
        f"status:      {result.status.value}",
        f"reason:      {reason}",
        f"tool calls:  {result.total_tool_calls}",
        f"steps:       {len(result.steps)}",
        "─" * 40,
    ]

    if result.final_answer is not None:
        output.append(result.final_answer.content)
    elif result.error:
        output.append(f"❌ Error: {result.error}")
    elif result.status == RunStatus.TERMINATED:
        output.append(f"⚠ Stopped: {reason}")

    return "\n".join(output)


class ConsoleRunObserver:
    """Prints the final summary, and streamed deltas when ``stream`` is set."""

    def __init__(self, stream: bool = False, out: TextIO | None = None) -> None:
        self.stream = stream
        self.out = out or sys.stdout
        self._mid_line = False

    def on_stream_chunk(self, chunk: StreamChunk) -> None:
        if not self.stream or not chunk.content_delta:
            return
        self.out.write(chunk.content_delta)
        self.out.flush()
        self._mid_line = True

    def on_run_finished(self, result: RunResult) -> None:
        if self._mid_line:
            self.out.write("\n")
            self._mid_line = False
        print(format_summary(result), file=self.out)
