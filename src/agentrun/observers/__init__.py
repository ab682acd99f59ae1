"""Run observers: console output and transcripts."""

from .base import RunObserver, notify_run_finished, notify_stream_chunk
from .console import ConsoleRunObserver, format_summary
from .transcript import TranscriptObserver

__all__ = [
    "ConsoleRunObserver",
    "RunObserver",
    "TranscriptObserver",
    "format_summary",
    "notify_run_finished",
    "notify_stream_chunk",
]
