"""Termination policy: decides whether a run stops after each stage, and why.

Every function here is pure. The loop consults them in order and applies
the first decision it gets back.
"""

from dataclasses import dataclass

from ..llm.base import AssistantMessage
from .state import RunStatus, TerminationReason


@dataclass(frozen=True)
class Termination:
    """A decision to stop the run."""

    status: RunStatus
    reason: TerminationReason
    details: str
    final_answer: AssistantMessage | None = None
    error: str | None = None


def after_model_call(message: AssistantMessage | None, error: str | None) -> Termination | None:
    """Stop on a failed model call, or complete when no tools were requested."""
    if message is None:
        return Termination(
            status=RunStatus.FAILED,
            reason=TerminationReason.MODEL_ERROR,
            details="Model call failed or returned non-assistant message.",
            error=error or "Model call failed",
        )
    if not message.tool_calls:
        return Termination(
            status=RunStatus.COMPLETED,
            reason=TerminationReason.COMPLETED,
            details="Assistant returned a final answer without tool calls.",
            final_answer=message,
        )
    return None


def check_tool_budget(
    total_tool_calls: int, requested: int, max_tool_calls: int | None
) -> Termination | None:
    """Stop when the whole batch would push the run past its tool-call budget."""
    if max_tool_calls is None:
        return None
    projected = total_tool_calls + requested
    if projected > max_tool_calls:
        return Termination(
            status=RunStatus.TERMINATED,
            reason=TerminationReason.MAX_STEPS_REACHED,
            details=f"Max tool calls exceeded: {projected} > {max_tool_calls}",
        )
    return None


def after_tool_round(iteration: int, max_steps: int) -> Termination | None:
    """Stop once the last allowed iteration has run its tools."""
    if iteration >= max_steps - 1:
        return Termination(
            status=RunStatus.TERMINATED,
            reason=TerminationReason.MAX_STEPS_REACHED,
            details="Reached max_steps without explicit completion.",
        )
    return None


def on_unexpected_error(error: BaseException) -> Termination:
    """Force-fail the run when something escaped every stage handler."""
    message = str(error) or f"Unknown error: {error.__class__.__name__}"
    return Termination(
        status=RunStatus.FAILED,
        reason=TerminationReason.MODEL_ERROR,
        details=message,
        error=message,
    )
