"""Tool registry for discovery and dispatch."""

from .registry import RegisteredTool, ToolRegistry

__all__ = ["RegisteredTool", "ToolRegistry"]
