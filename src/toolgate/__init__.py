"""Toolgate - Execution core for MCP-style tool servers.

Registers tools (a contract plus a handler), validates call arguments against
each tool's parameter schema, applies per-caller admission control, runs
handlers on a bounded pool under a deadline, and reports every outcome as a
structured result that never raises.

Quick Start:
    >>> from toolgate import FieldSpec, ParameterSchema, ToolRegistry, create_dispatcher, required
    >>>
    >>> registry = ToolRegistry()
    >>>
    >>> @registry.tool("echo", "Echo text back",
    ...                schema=ParameterSchema.of(text=required(FieldSpec(type="string", min_length=1))))
    ... def echo(text: str) -> str:
    ...     return text
    >>>
    >>> dispatcher = create_dispatcher(registry=registry)
    >>> result = await dispatcher.call("echo", {"text": "hi"}, caller_id="alice")
    >>> result.text
    'hi'
    >>> (await dispatcher.call("echo", {})).error_kind
    <ErrorKind.INVALID_ARGUMENTS: 'invalid_arguments'>

Handlers with deadlines:
    >>> @registry.tool("crawl", "Crawl pages", side_effects=True)
    ... def crawl(cancel: CancelToken) -> str:
    ...     for page in pages():
    ...         cancel.raise_if_cancelled()
    ...         fetch(page)
    ...     return "done"
    >>>
    >>> result = dispatcher.call_sync("crawl", deadline=5.0, idempotency_key="crawl-1")

MCP rendering:
    >>> registry.to_mcp_tools()   # tools/list payload
    >>> result.to_mcp()           # tools/call payload
"""

from __future__ import annotations

__version__ = "0.1.0"

# Core
from .foundation.core import (
    BaseHandler,
    ContentItem,
    Failure,
    FunctionHandler,
    ImageContent,
    InvocationResult,
    JsonContent,
    Success,
    TextContent,
    ToolContract,
    ToolHandler,
)

# Errors
from .foundation.errors import (
    DuplicateToolError,
    ErrorKind,
    HandlerCancelled,
    InvariantViolation,
    TicketReleaseError,
    ToolException,
    ToolgateError,
    ToolNotFoundError,
)

# Schema
from .foundation.schema import FieldSpec, FieldType, ParameterSchema, SchemaValidator, ValidationResult, required

# Registry
from .foundation.registry import RegisteredTool, ToolRegistry

# Config
from .foundation.config import ToolgateSettings, clear_settings_cache, get_settings

# Runtime
from .runtime.admission import AdmissionController, AdmissionTicket, Rejection, RejectReason
from .runtime.concurrency import CancelToken, run_sync
from .runtime.dispatch import Dispatcher, InvocationRequest, configure_logging_from_settings, create_dispatcher
from .runtime.execution import WorkerPool
from .runtime.observability import AuditSink, InvocationEvent, LoggingAuditSink, configure_logging, get_logger

# IO
from .io.idempotency import IdempotencyStore, MemoryIdempotencyStore

__all__ = [
    # Version
    "__version__",
    # Core
    "ToolContract",
    "ToolHandler",
    "BaseHandler",
    "FunctionHandler",
    "ContentItem",
    "TextContent",
    "JsonContent",
    "ImageContent",
    "InvocationResult",
    "Success",
    "Failure",
    # Errors
    "ErrorKind",
    "ToolgateError",
    "DuplicateToolError",
    "ToolNotFoundError",
    "InvariantViolation",
    "TicketReleaseError",
    "HandlerCancelled",
    "ToolException",
    # Schema
    "FieldSpec",
    "FieldType",
    "ParameterSchema",
    "SchemaValidator",
    "ValidationResult",
    "required",
    # Registry
    "ToolRegistry",
    "RegisteredTool",
    # Config
    "ToolgateSettings",
    "get_settings",
    "clear_settings_cache",
    # Runtime
    "AdmissionController",
    "AdmissionTicket",
    "Rejection",
    "RejectReason",
    "CancelToken",
    "run_sync",
    "Dispatcher",
    "InvocationRequest",
    "create_dispatcher",
    "configure_logging_from_settings",
    "WorkerPool",
    # Observability
    "AuditSink",
    "InvocationEvent",
    "LoggingAuditSink",
    "configure_logging",
    "get_logger",
    # IO
    "IdempotencyStore",
    "MemoryIdempotencyStore",
]
