"""Foundation - Core building blocks for toolgate.

Contains: core abstractions, error handling, schemas, registry, testing, config.
"""

from __future__ import annotations

__all__ = [
    # Core
    "ToolContract", "ToolHandler", "BaseHandler", "FunctionHandler", "as_handler",
    "Success", "Failure", "InvocationResult", "TextContent", "JsonContent", "ImageContent",
    # Errors
    "ErrorKind", "ToolgateError", "DuplicateToolError", "ToolNotFoundError",
    "InvariantViolation", "TicketReleaseError", "HandlerCancelled", "ToolException",
    # Schema
    "FieldSpec", "FieldType", "ParameterSchema", "required", "SchemaValidator", "ValidationResult",
    # Registry
    "ToolRegistry", "RegisteredTool",
    # Testing
    "RecordingHandler", "MemoryAuditSink", "sleeping_handler",
    # Config
    "ToolgateSettings", "get_settings", "clear_settings_cache",
]


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies."""
    if name in ("ToolContract", "ToolHandler", "BaseHandler", "FunctionHandler", "as_handler",
                "Success", "Failure", "InvocationResult", "TextContent", "JsonContent", "ImageContent"):
        from . import core
        return getattr(core, name)

    if name in ("ErrorKind", "ToolgateError", "DuplicateToolError", "ToolNotFoundError",
                "InvariantViolation", "TicketReleaseError", "HandlerCancelled", "ToolException"):
        from . import errors
        return getattr(errors, name)

    if name in ("FieldSpec", "FieldType", "ParameterSchema", "required", "SchemaValidator", "ValidationResult"):
        from . import schema
        return getattr(schema, name)

    if name in ("ToolRegistry", "RegisteredTool"):
        from . import registry
        return getattr(registry, name)

    if name in ("RecordingHandler", "MemoryAuditSink", "sleeping_handler"):
        from . import testing
        return getattr(testing, name)

    if name in ("ToolgateSettings", "get_settings", "clear_settings_cache"):
        from . import config
        return getattr(config, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
