"""agentrun: a single-run, tool-using agent loop."""

__version__ = "0.1.0"
