"""Run observer interface and notification helpers.

Observers are fire-and-forget from the loop's point of view: a failing
observer is logged and never changes the run result.
"""

import inspect
import logging
from typing import TYPE_CHECKING, Any, Protocol

from ..llm.base import StreamChunk

if TYPE_CHECKING:
    from ..agent.state import RunResult

logger = logging.getLogger(__name__)


class RunObserver(Protocol):
    """Receives the result of every finished run.

    Observers may also define ``on_stream_chunk(chunk)`` to receive live
    partial output of streamed model calls.
    """

    def on_run_finished(self, result: "RunResult") -> Any:
        """Called once per run. May be a coroutine function."""
        ...


async def _call(callback: Any, *args: Any) -> None:
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


async def notify_run_finished(observers: list[RunObserver], result: "RunResult") -> None:
    """Notify all observers that a run has finished, in order."""
    for observer in observers:
        try:
            await _call(observer.on_run_finished, result)
        except Exception:
            logger.warning(
                "Observer %s failed on run %s", type(observer).__name__, result.run_id,
                exc_info=True,
            )


async def notify_stream_chunk(observers: list[RunObserver], chunk: StreamChunk) -> None:
    """Forward a partial stream notification to observers that want it."""
    for observer in observers:
        callback = getattr(observer, "on_stream_chunk", None)
        if callback is None:
            continue
        try:
            await _call(callback, chunk)
        except Exception:
            logger.warning("Observer %s failed on stream chunk", type(observer).__name__,
                           exc_info=True)
