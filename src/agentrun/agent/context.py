"""Context preparation: the system and user messages that seed a run."""

from typing import Protocol

from ..llm.base import SystemMessage, UserMessage
from ..tools.base import ToolDefinition
from .prompt import build_system_prompt, build_user_prompt
from .state import AgentConfig, Task


class ContextPreparator(Protocol):
    """Builds the initial messages of a run. Called once, at run start."""

    def prepare(
        self, task: Task, config: AgentConfig, tools: list[ToolDefinition]
    ) -> tuple[SystemMessage, UserMessage]:
        ...


class DefaultContextPreparator:
    """Prompt-template based preparator."""

    def prepare(
        self, task: Task, config: AgentConfig, tools: list[ToolDefinition]
    ) -> tuple[SystemMessage, UserMessage]:
        system = SystemMessage(
            content=build_system_prompt(task.id, tools, config.allow_no_tool_answer)
        )
        user = UserMessage(content=build_user_prompt(task.description, task.input))
        return system, user
