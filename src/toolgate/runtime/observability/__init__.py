"""Observability: structured logging and per-invocation audit events."""

from .audit import AuditSink, InvocationEvent, LoggingAuditSink, Outcome
from .logging import (
    BoundLogger,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    MemoryRenderer,
    NoOpRenderer,
    configure_logging,
    get_logger,
    log_context,
)

__all__ = [
    # Logging
    "BoundLogger", "LogEntry", "LogRenderer", "ConsoleRenderer", "JsonRenderer",
    "NoOpRenderer", "MemoryRenderer", "configure_logging", "get_logger", "log_context",
    # Audit
    "AuditSink", "InvocationEvent", "LoggingAuditSink", "Outcome",
]
