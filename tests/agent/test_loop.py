"""Tests for the agent loop."""

import asyncio
import json
from typing import Any

import pytest

from agentrun.agent import (
    AgentConfig,
    AgentLoop,
    RunResult,
    RunStatus,
    StepType,
    Task,
    TerminationReason,
)
from agentrun.llm import (
    AssistantMessage,
    ChatParams,
    ChatResponse,
    StreamChunk,
    TokenUsage,
    ToolCall,
    UserMessage,
)
from agentrun.tools import (
    AddNumbersTool,
    EchoTool,
    Tool,
    ToolContext,
    ToolErrorType,
    ToolInvocation,
    ToolRegistry,
    ToolResult,
)


class ScriptedLLM:
    """Blocking model that replays scripted turns in order."""

    def __init__(self, *turns: Any) -> None:
        self.turns = list(turns)
        self.calls: list[ChatParams] = []

    def _next(self, params: ChatParams) -> Any:
        self.calls.append(params)
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        return turn

    async def chat(self, params: ChatParams) -> ChatResponse:
        turn = self._next(params)
        if isinstance(turn, ChatResponse):
            return turn
        return ChatResponse(message=turn)


class ScriptedStreamingLLM(ScriptedLLM):
    """Streams each scripted turn word by word, then a final chunk."""

    def __init__(self, *turns: Any, finish: bool = True) -> None:
        super().__init__(*turns)
        self.finish = finish

    async def chat(self, params: ChatParams) -> ChatResponse:
        raise AssertionError("streaming client should not be called in blocking mode")

    async def chat_stream(self, params: ChatParams):
        turn = self._next(params)
        for word in turn.content.split():
            yield StreamChunk(content_delta=word + " ")
        if self.finish:
            yield StreamChunk(done=True, message=turn, usage=TokenUsage(1, 2, 3))


class CountingTool(Tool):
    """Counts how often it runs."""

    def __init__(self) -> None:
        self.call_count = 0

    @property
    def name(self) -> str:
        return "count"

    @property
    def description(self) -> str:
        return "Counts calls"

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, args, ctx):
        self.call_count += 1
        return {"count": self.call_count}


class FailingTool(Tool):
    @property
    def name(self) -> str:
        return "explode"

    @property
    def description(self) -> str:
        return "Always raises"

    @property
    def parameters(self) -> dict:
        return {"type": "object", "properties": {}}

    async def execute(self, args, ctx):
        raise RuntimeError("kaboom")


class RendezvousTool(Tool):
    """The 'wait' call only finishes if a 'set' call runs at the same time."""

    def __init__(self) -> None:
        self.event = asyncio.Event()

    @property
    def name(self) -> str:
        return "rendezvous"

    @property
    def description(self) -> str:
        return "Waits for a sibling call"

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {"role": {"type": "string"}},
            "required": ["role"],
        }

    async def execute(self, args, ctx):
        if args["role"] == "wait":
            await asyncio.wait_for(self.event.wait(), timeout=1)
        else:
            self.event.set()
        return {"role": args["role"]}


class RecordingExecutor:
    """Wraps a registry and keeps the context of every batch."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry
        self.contexts: list[ToolContext] = []
        self.batches: list[list[ToolInvocation]] = []

    def definitions(self):
        return self.registry.definitions()

    async def execute(self, invocations, ctx) -> list[ToolResult]:
        self.contexts.append(ctx)
        self.batches.append(list(invocations))
        return await self.registry.execute(invocations, ctx)


class BrokenExecutor:
    """Returns no results at all."""

    async def execute(self, invocations, ctx) -> list[ToolResult]:
        return []


class CrashingExecutor:
    async def execute(self, invocations, ctx) -> list[ToolResult]:
        raise RuntimeError("executor down")


class CollectingObserver:
    def __init__(self) -> None:
        self.results: list[RunResult] = []
        self.chunks: list[StreamChunk] = []

    def on_run_finished(self, result: RunResult) -> None:
        self.results.append(result)

    def on_stream_chunk(self, chunk: StreamChunk) -> None:
        self.chunks.append(chunk)


def answer(text: str) -> AssistantMessage:
    return AssistantMessage(content=text)


def request(*calls: tuple[str, str, dict]) -> AssistantMessage:
    return AssistantMessage(
        content="",
        tool_calls=[ToolCall(id=cid, name=name, arguments=json.dumps(args)) for cid, name, args in calls],
    )


def make_loop(llm, tools: list[Tool] | None = None, **kwargs) -> AgentLoop:
    registry = ToolRegistry(tools if tools is not None else [AddNumbersTool(), EchoTool()])
    return AgentLoop(llm, registry, model="test-model", env={}, **kwargs)


@pytest.fixture
def task() -> Task:
    return Task(id="task-1", description="Add two numbers")


def step_types(result: RunResult) -> list[StepType]:
    return [step.type for step in result.steps]


def assert_run_invariants(result: RunResult) -> None:
    steps = result.steps
    assert [s.index for s in steps] == list(range(len(steps)))
    assert [s.id for s in steps] == [f"step-{i}" for i in range(len(steps))]

    terminations = [s for s in steps if s.type == StepType.TERMINATION]
    assert len(terminations) == 1
    assert steps[-1] is terminations[0]

    for previous, step in zip(steps, steps[1:]):
        if step.type == StepType.TOOL_RESULT:
            assert previous.type == StepType.TOOL_INVOCATION
            assert [r.call_id for r in step.results] == [i.call_id for i in previous.invocations]

    assert result.total_tool_calls == sum(
        len(s.results) for s in steps if s.type == StepType.TOOL_RESULT
    )
    assert (result.final_answer is not None) == (result.status == RunStatus.COMPLETED)
    assert result.updated_at >= result.created_at


@pytest.mark.asyncio
async def test_immediate_answer_completes(task: Task) -> None:
    """A turn without tool calls is the final answer."""
    llm = ScriptedLLM(answer("Hello!"))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=5))

    assert result.status == RunStatus.COMPLETED
    assert result.termination_reason == TerminationReason.COMPLETED
    assert result.final_answer.content == "Hello!"
    assert step_types(result) == [StepType.MODEL_CALL, StepType.TERMINATION]
    assert result.error is None
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_single_tool_round_then_answer(task: Task) -> None:
    llm = ScriptedLLM(
        request(("call_1", "add_numbers", {"a": 2, "b": 3})),
        answer("The sum is 5."),
    )
    result = await make_loop(llm).run(task, AgentConfig(max_steps=5))

    assert result.status == RunStatus.COMPLETED
    assert step_types(result) == [
        StepType.MODEL_CALL,
        StepType.TOOL_INVOCATION,
        StepType.TOOL_RESULT,
        StepType.MODEL_CALL,
        StepType.TERMINATION,
    ]
    assert result.total_tool_calls == 1
    assert result.final_answer.content == "The sum is 5."

    tool_result = result.steps[2].results[0]
    assert tool_result.ok is True
    assert tool_result.data == {"a": 2, "b": 3, "sum": 5}

    messages = result.state.messages
    assert [m.role.value for m in messages] == ["system", "user", "assistant", "tool", "assistant"]
    assert messages[3].tool_call_id == "call_1"
    assert json.loads(messages[3].content) == {"a": 2, "b": 3, "sum": 5}
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_max_steps_one_with_tool_request_terminates(task: Task) -> None:
    llm = ScriptedLLM(request(("call_1", "add_numbers", {"a": 1, "b": 1})))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=1))

    assert result.status == RunStatus.TERMINATED
    assert result.termination_reason == TerminationReason.MAX_STEPS_REACHED
    assert result.final_answer is None
    assert step_types(result) == [
        StepType.MODEL_CALL,
        StepType.TOOL_INVOCATION,
        StepType.TOOL_RESULT,
        StepType.TERMINATION,
    ]
    assert len(llm.calls) == 1
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_tool_budget_exceeded_skips_dispatch(task: Task) -> None:
    counter = CountingTool()
    llm = ScriptedLLM(request(("c1", "count", {}), ("c2", "count", {})))
    result = await make_loop(llm, tools=[counter]).run(
        task, AgentConfig(max_steps=5, max_tool_calls=1)
    )

    assert result.status == RunStatus.TERMINATED
    assert result.termination_reason == TerminationReason.MAX_STEPS_REACHED
    assert step_types(result) == [
        StepType.MODEL_CALL,
        StepType.TOOL_INVOCATION,
        StepType.TERMINATION,
    ]
    assert len(result.steps[1].invocations) == 2
    assert result.steps[-1].details == "Max tool calls exceeded: 2 > 1"
    assert result.total_tool_calls == 0
    assert counter.call_count == 0
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_tool_budget_counts_across_rounds(task: Task) -> None:
    counter = CountingTool()
    llm = ScriptedLLM(
        request(("c1", "count", {})),
        request(("c2", "count", {}), ("c3", "count", {})),
    )
    result = await make_loop(llm, tools=[counter]).run(
        task, AgentConfig(max_steps=5, max_tool_calls=2)
    )

    assert result.termination_reason == TerminationReason.MAX_STEPS_REACHED
    assert result.total_tool_calls == 1
    assert counter.call_count == 1
    assert result.steps[-1].details == "Max tool calls exceeded: 3 > 2"
    assert step_types(result)[-2:] == [StepType.TOOL_INVOCATION, StepType.TERMINATION]
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_model_error_fails_run(task: Task) -> None:
    llm = ScriptedLLM(RuntimeError("boom"))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    assert result.status == RunStatus.FAILED
    assert result.termination_reason == TerminationReason.MODEL_ERROR
    assert result.error == "boom"
    assert step_types(result) == [StepType.MODEL_CALL, StepType.TERMINATION]
    assert result.steps[0].error == "boom"
    assert result.steps[0].output_message is None
    assert result.steps[0].finished_at is not None
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_non_assistant_message_fails_run(task: Task) -> None:
    llm = ScriptedLLM(ChatResponse(message=UserMessage(content="not me")))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    assert result.status == RunStatus.FAILED
    assert result.termination_reason == TerminationReason.MODEL_ERROR
    assert 'got role "user"' in result.error
    assert len(result.state.messages) == 2
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_max_steps_reached_after_repeated_tool_rounds(task: Task) -> None:
    llm = ScriptedLLM(*[request((f"c{i}", "echo", {"message": str(i)})) for i in range(3)])
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    assert result.status == RunStatus.TERMINATED
    assert result.termination_reason == TerminationReason.MAX_STEPS_REACHED
    assert result.total_tool_calls == 3
    assert len(llm.calls) == 3
    assert result.steps[-1].details == "Reached max_steps without explicit completion."
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_history_is_append_only(task: Task) -> None:
    llm = ScriptedLLM(request(("c1", "echo", {"message": "hi"})), answer("done"))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    first, second = [s for s in result.steps if s.type == StepType.MODEL_CALL]
    assert len(first.input_messages) == 2
    assert len(second.input_messages) == 4
    assert result.state.messages[: len(second.input_messages)] == second.input_messages


@pytest.mark.asyncio
async def test_chat_params(task: Task) -> None:
    llm = ScriptedLLM(answer("ok"))
    loop = make_loop(llm)
    await loop.run(task, AgentConfig(max_steps=1, model_call_timeout_ms=1500))

    params = llm.calls[0]
    assert params.model == "test-model"
    assert params.tool_choice == "auto"
    assert params.timeout_ms == 1500
    assert [t.name for t in params.tools] == ["add_numbers", "echo"]
    assert params.messages[0].role.value == "system"
    assert "Add two numbers" in params.messages[1].content


@pytest.mark.asyncio
async def test_malformed_arguments_reach_tool_as_raw_text(task: Task) -> None:
    bad = AssistantMessage(tool_calls=[ToolCall(id="c1", name="add_numbers", arguments="{not json")])
    llm = ScriptedLLM(bad, answer("sorry"))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    invocation = result.steps[1].invocations[0]
    assert invocation.args == {"_raw": "{not json"}

    tool_result = result.steps[2].results[0]
    assert tool_result.ok is False
    assert tool_result.error.type == ToolErrorType.VALIDATION
    assert tool_result.error.details == {"raw_arguments": "{not json"}

    feedback = json.loads(result.state.messages[3].content)
    assert feedback["error"]["type"] == "validation"
    assert result.status == RunStatus.COMPLETED
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_deeply_nested_arguments_reach_tool_as_raw_text(task: Task) -> None:
    nested = "[" * 100_000 + "]" * 100_000
    bad = AssistantMessage(tool_calls=[ToolCall(id="c1", name="echo", arguments=nested)])
    llm = ScriptedLLM(bad, answer("sorry"))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    assert step_types(result) == [
        StepType.MODEL_CALL,
        StepType.TOOL_INVOCATION,
        StepType.TOOL_RESULT,
        StepType.MODEL_CALL,
        StepType.TERMINATION,
    ]
    assert result.steps[1].invocations[0].args == {"_raw": nested}
    assert result.steps[2].results[0].error.type == ToolErrorType.VALIDATION
    assert result.status == RunStatus.COMPLETED
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_model_supplied_call_ids_are_kept(task: Task) -> None:
    llm = ScriptedLLM(
        request(("call_0", "echo", {"message": "a"})),
        request(("call_0", "echo", {"message": "b"})),
        answer("done"),
    )
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    assert [result.steps[i].invocations[0].call_id for i in (1, 4)] == ["call_0", "call_0"]
    tool_messages = [m for m in result.state.messages if m.role.value == "tool"]
    assert [m.tool_call_id for m in tool_messages] == ["call_0", "call_0"]


@pytest.mark.asyncio
async def test_missing_call_ids_are_synthesized(task: Task) -> None:
    message = AssistantMessage(tool_calls=[
        ToolCall(id="", name="echo", arguments='{"message": "a"}'),
        ToolCall(id="", name="echo", arguments='{"message": "b"}'),
    ])
    llm = ScriptedLLM(message, answer("done"))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    call_ids = [inv.call_id for inv in result.steps[1].invocations]
    assert call_ids == ["toolcall-0-0", "toolcall-0-1"]
    assert [m.tool_call_id for m in result.state.messages[3:5]] == call_ids


@pytest.mark.asyncio
async def test_empty_arguments_become_empty_object(task: Task) -> None:
    counter = CountingTool()
    message = AssistantMessage(tool_calls=[ToolCall(id="c1", name="count", arguments="")])
    llm = ScriptedLLM(message, answer("done"))
    result = await make_loop(llm, tools=[counter]).run(task, AgentConfig(max_steps=3))

    assert result.steps[1].invocations[0].args == {}
    assert counter.call_count == 1


@pytest.mark.asyncio
async def test_failing_tool_does_not_abort_batch(task: Task) -> None:
    llm = ScriptedLLM(
        request(("c1", "explode", {}), ("c2", "echo", {"message": "still here"}), ("c3", "nope", {})),
        answer("done"),
    )
    result = await make_loop(llm, tools=[FailingTool(), EchoTool()]).run(
        task, AgentConfig(max_steps=3)
    )

    results = result.steps[2].results
    assert [r.call_id for r in results] == ["c1", "c2", "c3"]
    assert results[0].ok is False
    assert results[0].error.type == ToolErrorType.EXECUTION
    assert results[0].error.message == "kaboom"
    assert results[1].ok is True
    assert results[1].data == {"message": "still here"}
    assert results[2].error.type == ToolErrorType.NOT_FOUND
    assert result.total_tool_calls == 3
    assert result.status == RunStatus.COMPLETED
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_tools_in_a_batch_run_concurrently(task: Task) -> None:
    llm = ScriptedLLM(
        request(("c1", "rendezvous", {"role": "wait"}), ("c2", "rendezvous", {"role": "set"})),
        answer("done"),
    )
    result = await make_loop(llm, tools=[RendezvousTool()]).run(task, AgentConfig(max_steps=3))

    results = result.steps[2].results
    assert [r.ok for r in results] == [True, True]
    assert [r.data["role"] for r in results] == ["wait", "set"]
    assert [m.tool_call_id for m in result.state.messages[3:5]] == ["c1", "c2"]


@pytest.mark.asyncio
async def test_tool_context_threads_config(task: Task) -> None:
    executor = RecordingExecutor(ToolRegistry([EchoTool()]))
    logged: list[tuple[str, dict]] = []
    llm = ScriptedLLM(request(("c1", "echo", {"message": "hi"})), answer("done"))
    loop = AgentLoop(
        llm,
        executor,
        env={"API_TOKEN": "secret"},
        tool_log=lambda message, fields: logged.append((message, fields)),
    )
    await loop.run(task, AgentConfig(max_steps=3, tool_call_timeout_ms=250))

    ctx = executor.contexts[0]
    assert ctx.env == {"API_TOKEN": "secret"}
    assert ctx.timeout_ms == 250
    assert logged == [("echo tool invoked", {"message": "hi"})]
    assert [t.name for t in loop.tool_definitions] == ["echo"]


@pytest.mark.asyncio
async def test_executor_contract_violation_fails_run(task: Task) -> None:
    llm = ScriptedLLM(request(("c1", "echo", {"message": "hi"})))
    loop = AgentLoop(llm, BrokenExecutor(), tool_definitions=[], env={})
    result = await loop.run(task, AgentConfig(max_steps=3))

    assert result.status == RunStatus.FAILED
    assert result.termination_reason == TerminationReason.MODEL_ERROR
    assert "returned 0 result(s) for 1 invocation(s)" in result.error
    assert step_types(result) == [
        StepType.MODEL_CALL,
        StepType.TOOL_INVOCATION,
        StepType.TERMINATION,
    ]
    assert result.total_tool_calls == 0
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_unexpected_exception_is_contained(task: Task) -> None:
    llm = ScriptedLLM(request(("c1", "echo", {"message": "hi"})))
    loop = AgentLoop(llm, CrashingExecutor(), tool_definitions=[], env={})
    result = await loop.run(task, AgentConfig(max_steps=3))

    assert result.status == RunStatus.FAILED
    assert result.termination_reason == TerminationReason.MODEL_ERROR
    assert result.error == "executor down"
    assert result.steps[-1].details == "executor down"
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_streaming_matches_blocking(task: Task) -> None:
    script = (
        request(("call_1", "add_numbers", {"a": 2, "b": 3})),
        answer("The sum is 5."),
    )
    observer = CollectingObserver()

    blocking = await make_loop(ScriptedLLM(*script)).run(task, AgentConfig(max_steps=5))
    streamed = await make_loop(
        ScriptedStreamingLLM(*script), stream=True, observers=[observer]
    ).run(task, AgentConfig(max_steps=5))

    assert step_types(streamed) == step_types(blocking)
    assert streamed.final_answer.content == blocking.final_answer.content
    assert [m.to_dict() for m in streamed.state.messages] == [
        m.to_dict() for m in blocking.state.messages
    ]
    assert "".join(c.content_delta for c in observer.chunks) == "The sum is 5. "
    assert all(not c.done for c in observer.chunks)
    assert streamed.steps[0].usage == TokenUsage(1, 2, 3)
    assert observer.results == [streamed]
    assert_run_invariants(streamed)


@pytest.mark.asyncio
async def test_stream_without_final_chunk_fails(task: Task) -> None:
    llm = ScriptedStreamingLLM(answer("partial output"), finish=False)
    result = await make_loop(llm, stream=True).run(task, AgentConfig(max_steps=3))

    assert result.status == RunStatus.FAILED
    assert result.termination_reason == TerminationReason.MODEL_ERROR
    assert result.error == "Stream ended without a final message"
    assert len(result.state.messages) == 2
    assert_run_invariants(result)


@pytest.mark.asyncio
async def test_stream_flag_falls_back_to_blocking_client(task: Task) -> None:
    llm = ScriptedLLM(answer("no streaming here"))
    result = await make_loop(llm, stream=True).run(task, AgentConfig(max_steps=1))

    assert result.status == RunStatus.COMPLETED
    assert result.final_answer.content == "no streaming here"


@pytest.mark.asyncio
async def test_observers_are_notified(task: Task) -> None:
    seen: list[str] = []

    class AsyncObserver:
        async def on_run_finished(self, result: RunResult) -> None:
            await asyncio.sleep(0)
            seen.append(result.run_id)

    class BrokenObserver:
        def on_run_finished(self, result: RunResult) -> None:
            raise RuntimeError("observer bug")

    collector = CollectingObserver()
    llm = ScriptedLLM(answer("hi"))
    loop = make_loop(llm, observers=[BrokenObserver(), AsyncObserver(), collector])
    result = await loop.run(task, AgentConfig(max_steps=1))

    assert seen == [result.run_id]
    assert collector.results == [result]
    assert result.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_run_events_are_logged(task: Task, isolated_logger) -> None:
    llm = ScriptedLLM(request(("c1", "echo", {"message": "hi"})), answer("done"))
    result = await make_loop(llm).run(task, AgentConfig(max_steps=3))

    with open(isolated_logger.log_path) as f:
        entries = [json.loads(line) for line in f]

    events = [e["event"] for e in entries]
    assert events == ["run_start", "model_call", "tool_call", "tool_result", "model_call", "run_stop"]
    assert all(e["run_id"] == result.run_id for e in entries)
    assert entries[-1]["stopped_reason"] == "completed"


@pytest.mark.asyncio
async def test_tool_log_lines_carry_run_id(task: Task, isolated_logger) -> None:
    llm = ScriptedLLM(request(("c1", "echo", {"message": "hi"})), answer("done"))
    loop = make_loop(llm, tool_log=isolated_logger.tool_log)
    result = await loop.run(task, AgentConfig(max_steps=3))

    with open(isolated_logger.log_path) as f:
        entries = [json.loads(line) for line in f]

    tool_logs = [e for e in entries if e["event"] == "tool_log"]
    assert len(tool_logs) == 1
    assert tool_logs[0]["run_id"] == result.run_id
    assert tool_logs[0]["extra"]["message"] == "echo tool invoked"

    isolated_logger.log("after_run")
    with open(isolated_logger.log_path) as f:
        last = json.loads(f.readlines()[-1])
    assert "run_id" not in last
