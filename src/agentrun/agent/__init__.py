"""Agent loop and core logic."""

from .context import ContextPreparator, DefaultContextPreparator
from .loop import AgentLoop, ModelCallError, ToolDispatchError, ToolExecutor
from .policy import Termination
from .state import (
    AgentConfig,
    RunResult,
    RunState,
    RunStateError,
    RunStatus,
    StepType,
    Task,
    TerminationReason,
    create_initial_state,
    new_task_id,
    next_step_ref,
    step_to_dict,
)

__all__ = [
    "AgentConfig",
    "AgentLoop",
    "ContextPreparator",
    "DefaultContextPreparator",
    "ModelCallError",
    "RunResult",
    "RunState",
    "RunStateError",
    "RunStatus",
    "StepType",
    "Task",
    "Termination",
    "TerminationReason",
    "ToolDispatchError",
    "ToolExecutor",
    "create_initial_state",
    "new_task_id",
    "next_step_ref",
    "step_to_dict",
]
