"""Shared fixtures."""

from pathlib import Path

import pytest

from agentrun import logging as run_logging


@pytest.fixture(autouse=True)
def isolated_logger(tmp_path: Path):
    """Point the global JSONL logger at a temporary directory."""
    logger = run_logging.configure_logger(log_dir=tmp_path / "jsonl")
    yield logger
    run_logging._logger = None
