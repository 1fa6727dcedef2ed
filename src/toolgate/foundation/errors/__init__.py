"""Error handling for toolgate.

- ErrorKind: stable caller-visible error classification
- ToolgateError hierarchy: exceptions for programming errors inside the core
- ToolException: structured failure raised by handlers
"""

from .errors import (
    DuplicateToolError,
    ErrorKind,
    HandlerCancelled,
    InvariantViolation,
    TicketReleaseError,
    ToolException,
    ToolgateError,
    ToolNotFoundError,
    is_retryable,
)
from .types import EMPTY_DETAILS, JsonDict, JsonMapping, JsonPrimitive, JsonValue

__all__ = [
    # Kinds
    "ErrorKind", "is_retryable",
    # Exceptions
    "ToolgateError", "DuplicateToolError", "ToolNotFoundError",
    "InvariantViolation", "TicketReleaseError", "HandlerCancelled", "ToolException",
    # JSON aliases
    "JsonDict", "JsonMapping", "JsonPrimitive", "JsonValue", "EMPTY_DETAILS",
]
