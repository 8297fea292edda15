"""Browser automation and instrumentation control layer for AI agents."""

__version__ = "0.1.0"
