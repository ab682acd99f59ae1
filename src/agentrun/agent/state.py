"""Data model for a single agent run.

A run is recorded two ways: the message history fed to the model, and the
step history describing what the loop did. Both only ever grow. RunState
guards the invariants that tie them together (dense step indices, a single
trailing termination step, forward-only status).
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from ..llm.base import AssistantMessage, Message, SystemMessage, TokenUsage, UserMessage
from ..tools.base import ToolInvocation, ToolResult, utc_now


class RunStateError(RuntimeError):
    """Raised on an illegal mutation of a RunState."""


class RunStatus(Enum):
    """High-level status of an agent run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.TERMINATED)


_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.IDLE: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.TERMINATED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
    RunStatus.TERMINATED: frozenset(),
}


class TerminationReason(Enum):
    """Why the agent loop stopped.

    TOOL_ERROR and USER_STOPPED are reserved; the loop never emits them.
    """

    COMPLETED = "completed"
    MAX_STEPS_REACHED = "max_steps_reached"
    MODEL_ERROR = "model_error"
    TOOL_ERROR = "tool_error"
    USER_STOPPED = "user_stopped"


class StepType(Enum):
    MODEL_CALL = "model_call"
    TOOL_INVOCATION = "tool_invocation"
    TOOL_RESULT = "tool_result"
    TERMINATION = "termination"


def new_run_id() -> str:
    """Time plus randomness; unique in practice, not guaranteed."""
    return f"run-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def new_task_id() -> str:
    return f"task-{int(time.time() * 1000)}"


@dataclass(frozen=True)
class Task:
    """What the agent is asked to do."""

    id: str
    description: str
    input: Any = None


@dataclass(frozen=True)
class AgentConfig:
    """Configuration for a single run. Immutable once the run starts.

    Timeouts are passed through to the model client and tool executor; the
    loop itself never enforces them.
    """

    max_steps: int
    max_tool_calls: int | None = None
    model_call_timeout_ms: int | None = None
    tool_call_timeout_ms: int | None = None
    allow_no_tool_answer: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1, got {self.max_steps}")
        if self.max_tool_calls is not None and self.max_tool_calls < 0:
            raise ValueError(f"max_tool_calls must be >= 0, got {self.max_tool_calls}")


@dataclass(frozen=True)
class StepRef:
    id: str
    index: int


@dataclass
class ModelCallStep:
    id: str
    index: int
    input_messages: list[Message]
    output_message: AssistantMessage | None = None
    error: str | None = None
    usage: TokenUsage | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    type: StepType = field(default=StepType.MODEL_CALL, init=False)


@dataclass
class ToolInvocationStep:
    id: str
    index: int
    invocations: list[ToolInvocation]
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    type: StepType = field(default=StepType.TOOL_INVOCATION, init=False)


@dataclass
class ToolResultStep:
    id: str
    index: int
    results: list[ToolResult]
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    type: StepType = field(default=StepType.TOOL_RESULT, init=False)


@dataclass
class TerminationStep:
    id: str
    index: int
    reason: TerminationReason
    details: str = ""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    type: StepType = field(default=StepType.TERMINATION, init=False)


Step = Union[ModelCallStep, ToolInvocationStep, ToolResultStep, TerminationStep]


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def step_to_dict(step: Step) -> dict[str, Any]:
    """Serialize any step variant to a JSON-friendly dict."""
    data: dict[str, Any] = {
        "id": step.id,
        "index": step.index,
        "type": step.type.value,
        "started_at": _iso(step.started_at),
        "finished_at": _iso(step.finished_at),
    }

    if step.type == StepType.MODEL_CALL:
        data["input_messages"] = [m.to_dict() for m in step.input_messages]
        data["output_message"] = step.output_message.to_dict() if step.output_message else None
        data["error"] = step.error
        data["usage"] = step.usage.to_dict() if step.usage else None
    elif step.type == StepType.TOOL_INVOCATION:
        data["invocations"] = [inv.to_dict() for inv in step.invocations]
    elif step.type == StepType.TOOL_RESULT:
        data["results"] = [res.to_dict() for res in step.results]
    elif step.type == StepType.TERMINATION:
        data["reason"] = step.reason.value
        data["details"] = step.details
    else:
        raise TypeError(f"Unknown step type: {step.type!r}")

    return data


@dataclass
class RunState:
    """Mutable record of one run, owned by the loop executing it."""

    run_id: str
    task: Task
    config: AgentConfig
    messages: list[Message]
    status: RunStatus = RunStatus.IDLE
    termination_reason: TerminationReason | None = None
    error: str | None = None
    steps: list[Step] = field(default_factory=list)
    total_tool_calls: int = 0
    final_answer: AssistantMessage | None = None
    available_tool_names: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def touch(self) -> None:
        self.updated_at = max(utc_now(), self.created_at)

    def _transition(self, status: RunStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise RunStateError(
                f"Run {self.run_id}: illegal transition {self.status.value} -> {status.value}"
            )
        self.status = status
        self.touch()

    def start(self) -> None:
        """Move an idle run to running."""
        self._transition(RunStatus.RUNNING)

    def append_step(self, step: Step) -> None:
        """Append a step, checking it was sequenced against this state."""
        if self.steps and self.steps[-1].type == StepType.TERMINATION:
            raise RunStateError(f"Run {self.run_id} is terminated; cannot append {step.id}")
        if step.index != len(self.steps):
            raise RunStateError(
                f"Run {self.run_id}: step index {step.index} != expected {len(self.steps)}"
            )
        self.steps.append(step)
        self.touch()

    def append_message(self, message: Message) -> None:
        if self.is_terminal:
            raise RunStateError(f"Run {self.run_id} is terminated; history is frozen")
        self.messages.append(message)

    def add_tool_calls(self, count: int) -> None:
        if count < 0:
            raise RunStateError("Tool call count cannot decrease")
        self.total_tool_calls += count

    def terminate(
        self,
        status: RunStatus,
        reason: TerminationReason,
        details: str = "",
        *,
        final_answer: AssistantMessage | None = None,
        error: str | None = None,
    ) -> TerminationStep:
        """Append the termination step and move to a terminal status.

        ``final_answer`` is only accepted for a completed run, and a
        completed run must have one.
        """
        if not status.is_terminal:
            raise RunStateError(f"{status.value} is not a terminal status")
        if status not in _TRANSITIONS[self.status]:
            raise RunStateError(
                f"Run {self.run_id}: illegal transition {self.status.value} -> {status.value}"
            )
        completed = status == RunStatus.COMPLETED and reason == TerminationReason.COMPLETED
        if completed != (final_answer is not None):
            raise RunStateError("final_answer is set if and only if the run completed")

        ref = next_step_ref(self)
        now = utc_now()
        step = TerminationStep(
            id=ref.id,
            index=ref.index,
            reason=reason,
            details=details,
            started_at=now,
            finished_at=now,
        )
        self.append_step(step)
        self._transition(status)
        self.termination_reason = reason
        self.final_answer = final_answer
        if error is not None:
            self.error = error
        return step


def next_step_ref(state: RunState) -> StepRef:
    """Allocate the id and index of the next step of ``state``."""
    index = len(state.steps)
    return StepRef(id=f"step-{index}", index=index)


def create_initial_state(
    task: Task,
    config: AgentConfig,
    system: SystemMessage,
    user: UserMessage,
    available_tool_names: list[str] | None = None,
) -> RunState:
    """Create the idle state of a new run, seeded with the system and user messages."""
    return RunState(
        run_id=new_run_id(),
        task=task,
        config=config,
        messages=[system, user],
        available_tool_names=list(available_tool_names or []),
    )


@dataclass
class RunResult:
    """Summary of a finished run, with the full state for introspection."""

    state: RunState

    @property
    def run_id(self) -> str:
        return self.state.run_id

    @property
    def status(self) -> RunStatus:
        return self.state.status

    @property
    def termination_reason(self) -> TerminationReason | None:
        return self.state.termination_reason

    @property
    def final_answer(self) -> AssistantMessage | None:
        return self.state.final_answer

    @property
    def error(self) -> str | None:
        return self.state.error

    @property
    def steps(self) -> list[Step]:
        return self.state.steps

    @property
    def total_tool_calls(self) -> int:
        return self.state.total_tool_calls

    @property
    def created_at(self) -> datetime:
        return self.state.created_at

    @property
    def updated_at(self) -> datetime:
        assert self.state.updated_at is not None
        return self.state.updated_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "task_id": self.state.task.id,
            "status": self.status.value,
            "termination_reason": (
                self.termination_reason.value if self.termination_reason else None
            ),
            "final_answer": self.final_answer.to_dict() if self.final_answer else None,
            "error": self.error,
            "steps": [step_to_dict(step) for step in self.steps],
            "total_tool_calls": self.total_tool_calls,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
