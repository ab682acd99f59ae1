"""Agent loop implementation."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, Protocol

from ..llm.base import (
    AssistantMessage,
    ChatParams,
    LLMClient,
    Message,
    Role,
    StreamingLLMClient,
    TokenUsage,
    ToolCall,
    ToolMessage,
)
from ..logging import JSONLLogger, get_logger
from ..observers.base import RunObserver, notify_run_finished, notify_stream_chunk
from ..tools.base import ToolContext, ToolDefinition, ToolInvocation, ToolLog, ToolResult, utc_now
from . import policy
from .context import ContextPreparator, DefaultContextPreparator
from .policy import Termination
from .prompt import format_tool_result
from .state import (
    AgentConfig,
    ModelCallStep,
    RunResult,
    RunState,
    Task,
    ToolInvocationStep,
    ToolResultStep,
    create_initial_state,
    next_step_ref,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.1-70b-versatile"

# Key of the payload handed to a tool when its arguments are not valid JSON.
RAW_ARGUMENTS_KEY = "_raw"


class ModelCallError(RuntimeError):
    """The model call produced something other than one assistant turn."""


class ToolDispatchError(RuntimeError):
    """The tool executor broke its contract (result count or order)."""


class ToolExecutor(Protocol):
    """Capability that runs a batch of tool invocations."""

    async def execute(
        self, invocations: list[ToolInvocation], ctx: ToolContext
    ) -> list[ToolResult]:
        """Return one result per invocation, in invocation order."""
        ...


def parse_arguments(raw: str | None) -> Any:
    """Parse a tool call's argument text.

    Malformed JSON is not an error here: the raw text is handed to the tool
    under ``RAW_ARGUMENTS_KEY`` so the tool can reject it.
    """
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        return {RAW_ARGUMENTS_KEY: raw}


def to_invocations(tool_calls: list[ToolCall], step_index: int) -> list[ToolInvocation]:
    """Translate the assistant's requested actions into tool invocations.

    Only missing ids are synthesized. Ids the model supplies are kept as
    returned so each tool message still answers its assistant tool call;
    keeping them unique across the run is left to the model client.
    """
    return [
        ToolInvocation(
            call_id=call.id or f"toolcall-{step_index}-{position}",
            tool_name=call.name,
            args=parse_arguments(call.arguments),
        )
        for position, call in enumerate(tool_calls)
    ]


class AgentLoop:
    """Drives one run: model call → tool dispatch → feedback, until a stop."""

    def __init__(
        self,
        llm: LLMClient,
        tools: ToolExecutor,
        tool_definitions: list[ToolDefinition] | None = None,
        model: str = DEFAULT_MODEL,
        context_preparator: ContextPreparator | None = None,
        observers: list[RunObserver] | None = None,
        stream: bool = False,
        json_logger: JSONLLogger | None = None,
        tool_log: ToolLog | None = None,
        env: Mapping[str, str] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        if tool_definitions is None:
            definitions = getattr(tools, "definitions", None)
            tool_definitions = definitions() if callable(definitions) else []
        self.llm = llm
        self.tools = tools
        self.tool_definitions = tool_definitions
        self.model = model
        self.context_preparator = context_preparator or DefaultContextPreparator()
        self.observers = list(observers or [])
        self.stream = stream
        self.json_logger = json_logger or get_logger()
        self.tool_log = tool_log
        self.env = env
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def run(self, task: Task, config: AgentConfig) -> RunResult:
        """Run the agent loop for a task.

        Ordinary failures (model errors, exhausted budgets, unexpected
        exceptions inside the loop) never raise; they are reported through
        the returned result's status and termination reason.

        Args:
            task: What the agent is asked to do.
            config: Limits and timeouts for this run.

        Returns:
            RunResult wrapping the final run state.
        """
        system, user = self.context_preparator.prepare(task, config, self.tool_definitions)
        state = create_initial_state(
            task, config, system, user, [t.name for t in self.tool_definitions]
        )
        state.start()
        # Tool log lines carry no run id of their own
        self.json_logger.set_run_id(state.run_id)
        self.json_logger.log("run_start", run_id=state.run_id, task_id=task.id, model=self.model)

        try:
            await self._drive(state)
        except Exception as e:
            logger.exception("Unexpected error in run %s", state.run_id)
            if not state.is_terminal:
                self._terminate(state, policy.on_unexpected_error(e))

        result = RunResult(state=state)
        self.json_logger.log_run_stop(
            state.termination_reason.value if state.termination_reason else "unknown",
            run_id=state.run_id,
            status=state.status.value,
            steps=len(state.steps),
            tool_calls_total=state.total_tool_calls,
            error=state.error,
        )
        self.json_logger.set_run_id(None)
        await notify_run_finished(self.observers, result)
        return result

    async def _drive(self, state: RunState) -> None:
        """The bounded iteration. Returns once a termination step is appended."""
        config = state.config

        for iteration in range(config.max_steps):
            model_step_index = next_step_ref(state).index
            message, error = await self._model_call_stage(state)

            decision = policy.after_model_call(message, error)
            if decision is not None:
                self._terminate(state, decision)
                return
            assert message is not None

            invocations = self._record_invocations(state, message, model_step_index)

            decision = policy.check_tool_budget(
                state.total_tool_calls, len(invocations), config.max_tool_calls
            )
            if decision is not None:
                self._terminate(state, decision)
                return

            await self._dispatch_tools(state, invocations)

            decision = policy.after_tool_round(iteration, config.max_steps)
            if decision is not None:
                self._terminate(state, decision)
                return

    # ------------------------------------------------------------------
    # Model call stage
    # ------------------------------------------------------------------

    async def _call_model(self, params: ChatParams) -> tuple[Message, TokenUsage | None]:
        """Get one complete model turn, blocking or streamed."""
        if not self.stream or not isinstance(self.llm, StreamingLLMClient):
            response = await self.llm.chat(params)
            return response.message, response.usage

        stream = self.llm.chat_stream(params)
        try:
            async for chunk in stream:
                if chunk.done:
                    if chunk.message is None:
                        raise ModelCallError("Final stream chunk carried no message")
                    return chunk.message, chunk.usage
                await notify_stream_chunk(self.observers, chunk)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        raise ModelCallError("Stream ended without a final message")

    async def _model_call_stage(
        self, state: RunState
    ) -> tuple[AssistantMessage | None, str | None]:
        """Call the model once and record the step, whatever happens.

        Returns:
            (assistant message, None) on success, (None, error) on failure.
        """
        ref = next_step_ref(state)
        step = ModelCallStep(id=ref.id, index=ref.index, input_messages=list(state.messages))
        params = ChatParams(
            model=self.model,
            messages=list(state.messages),
            tools=self.tool_definitions,
            tool_choice="auto",
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout_ms=state.config.model_call_timeout_ms,
            metadata=dict(state.config.metadata),
        )

        try:
            message, usage = await self._call_model(params)
            role = getattr(message, "role", None)
            if role != Role.ASSISTANT or not isinstance(message, AssistantMessage):
                shown = role.value if isinstance(role, Role) else role
                raise ModelCallError(f'Expected assistant message, got role "{shown}"')
            step.output_message = message
            step.usage = usage
            state.append_message(message)
        except Exception as e:
            step.error = str(e) or f"Unknown model error: {e.__class__.__name__}"
        finally:
            step.finished_at = utc_now()
            state.append_step(step)

        logger.debug("Run %s: %s model_call error=%s", state.run_id, step.id, step.error)
        self.json_logger.log_model_call(
            step.id,
            run_id=state.run_id,
            model=self.model,
            messages_count=len(step.input_messages),
            tool_calls_count=len(step.output_message.tool_calls) if step.output_message else 0,
            error=step.error,
        )
        return step.output_message, step.error

    # ------------------------------------------------------------------
    # Tool dispatch stage
    # ------------------------------------------------------------------

    def _record_invocations(
        self, state: RunState, message: AssistantMessage, model_step_index: int
    ) -> list[ToolInvocation]:
        """Translate requested actions and record them before anything runs."""
        invocations = to_invocations(message.tool_calls, model_step_index)
        ref = next_step_ref(state)
        now = utc_now()
        state.append_step(ToolInvocationStep(
            id=ref.id,
            index=ref.index,
            invocations=invocations,
            started_at=now,
            finished_at=now,
        ))
        for invocation in invocations:
            self.json_logger.log_tool_call(
                invocation.tool_name,
                invocation.args,
                call_id=invocation.call_id,
                run_id=state.run_id,
            )
        return invocations

    def _tool_context(self, state: RunState) -> ToolContext:
        return ToolContext(
            now=utc_now,
            env=dict(self.env) if self.env is not None else dict(os.environ),
            log=self.tool_log,
            timeout_ms=state.config.tool_call_timeout_ms,
        )

    async def _dispatch_tools(self, state: RunState, invocations: list[ToolInvocation]) -> None:
        """Run the batch concurrently, record the results, feed them back."""
        started_at = utc_now()
        results = await self.tools.execute(invocations, self._tool_context(state))

        if [r.call_id for r in results] != [i.call_id for i in invocations]:
            raise ToolDispatchError(
                f"Tool executor returned {len(results)} result(s) for "
                f"{len(invocations)} invocation(s) or out of order"
            )

        state.add_tool_calls(len(results))

        ref = next_step_ref(state)
        state.append_step(ToolResultStep(
            id=ref.id,
            index=ref.index,
            results=results,
            started_at=started_at,
            finished_at=utc_now(),
        ))

        for result in results:
            self.json_logger.log_tool_result(
                result.tool_name,
                result.ok,
                call_id=result.call_id,
                run_id=state.run_id,
                duration_ms=result.duration_ms,
                error=result.error.message if result.error else None,
            )
            state.append_message(ToolMessage(
                content=format_tool_result(result),
                tool_call_id=result.call_id,
            ))

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _terminate(self, state: RunState, decision: Termination) -> None:
        state.terminate(
            decision.status,
            decision.reason,
            decision.details,
            final_answer=decision.final_answer,
            error=decision.error,
        )
        logger.debug(
            "Run %s terminated: %s/%s", state.run_id, decision.status.value, decision.reason.value
        )
