"""Command-line interface: run one task through the agent loop."""

import argparse
import sys

from .agent import AgentLoop, RunStatus, Task, new_task_id
from .config import AppConfig, load_config
from .llm import GroqLLMClient
from .logging import configure_logger
from .observers import ConsoleRunObserver, RunObserver, TranscriptObserver
from .tools import ToolRegistry, default_tools


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentrun",
        description="Run a tool-using agent on a single task.",
    )
    parser.add_argument("task", nargs="*", help="Task description (defaults to a demo task)")
    parser.add_argument("--model", help="Model name (overrides GROQ_MODEL)")
    parser.add_argument("--max-steps", type=int, help="Maximum loop iterations")
    parser.add_argument("--max-tool-calls", type=int, help="Maximum tool calls for the run")
    parser.add_argument("--stream", action="store_true", help="Stream model output live")
    parser.add_argument(
        "--no-transcript", action="store_true", help="Do not write a run transcript"
    )
    return parser


def build_loop(config: AppConfig, args: argparse.Namespace) -> AgentLoop:
    """Wire the Groq client, basic tools, and observers into an AgentLoop."""
    json_logger = configure_logger(log_dir=config.log_dir)
    registry = ToolRegistry(default_tools())

    observers: list[RunObserver] = [ConsoleRunObserver(stream=args.stream)]
    if not args.no_transcript:
        observers.append(TranscriptObserver(config.transcript_dir))

    return AgentLoop(
        llm=GroqLLMClient(api_key=config.api_key),
        tools=registry,
        model=args.model or config.model,
        observers=observers,
        stream=args.stream,
        json_logger=json_logger,
        tool_log=json_logger.tool_log,
    )


async def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    try:
        config = load_config()
    except ValueError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    # Check for API key
    if not config.api_key:
        print("❌ Error: GROQ_API_KEY environment variable not set", file=sys.stderr)
        print("Please set it in your .env file or environment", file=sys.stderr)
        return 1

    if args.model:
        config.model = args.model

    task = Task(
        id=new_task_id(),
        description=" ".join(args.task) or config.default_task_description,
    )
    try:
        agent_config = config.agent_config(
            max_steps=args.max_steps,
            max_tool_calls=args.max_tool_calls,
        )
    except ValueError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    loop = build_loop(config, args)
    result = await loop.run(task, agent_config)
    return 0 if result.status == RunStatus.COMPLETED else 1
