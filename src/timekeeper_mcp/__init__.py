"""Timekeeper MCP: timers, sessions and branch-driven time tracking."""

__version__ = "0.1.0"

__all__ = ["__version__"]
