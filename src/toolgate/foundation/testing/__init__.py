"""Testing utilities for tools and dispatch."""

from .mock import Invocation, MemoryAuditSink, RecordingHandler, sleeping_handler

__all__ = ["Invocation", "MemoryAuditSink", "RecordingHandler", "sleeping_handler"]
