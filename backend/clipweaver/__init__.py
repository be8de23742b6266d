"""ClipWeaver — multi-provider video generation job orchestrator."""

__version__ = "0.1.0"
