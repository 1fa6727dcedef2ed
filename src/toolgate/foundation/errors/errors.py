"""Error taxonomy for tool dispatch.

Two layers:
- ErrorKind: stable, caller-visible classification carried by every Failure
- ToolgateError hierarchy: exceptions for programming errors inside the core

Caller-facing failures are values (see `toolgate.foundation.core.result`), never
raised across the Dispatcher boundary. Only InvariantViolation is allowed to
escape, since it means the core itself is broken.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Self

if TYPE_CHECKING:
    from toolgate.foundation.core.result import Failure
    from .types import JsonDict


class ErrorKind(StrEnum):
    """Stable error kinds reported to callers.

    Used for programmatic retry decisions; callers never need to
    string-match failure messages.
    """
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_ARGUMENTS = "invalid_arguments"
    THROTTLED = "throttled"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


# Default retryability per kind. Timeout is refined per call by the Dispatcher.
_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({
    ErrorKind.THROTTLED,
    ErrorKind.TIMEOUT,
    ErrorKind.CANCELLED,
    ErrorKind.INTERNAL_ERROR,
})


def is_retryable(kind: ErrorKind) -> bool:
    """Default retryability for an error kind."""
    return kind in _RETRYABLE_KINDS


class ToolgateError(Exception):
    """Base class for toolgate exceptions."""


class DuplicateToolError(ToolgateError, ValueError):
    """Raised when registering a name that is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' already registered. Use unregister() first.")


class ToolNotFoundError(ToolgateError, LookupError):
    """Raised by ToolRegistry.lookup() for unknown names."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found in registry")


class InvariantViolation(ToolgateError, RuntimeError):
    """Internal invariant broken. Never converted to a Failure."""


class TicketReleaseError(InvariantViolation):
    """Admission ticket released more than once or by a foreign controller."""


class HandlerCancelled(ToolgateError):
    """Raised inside a handler that observed its cancel token."""

    def __init__(self, reason: str = "cancelled") -> None:
        self.reason = reason
        super().__init__(f"Handler cancelled: {reason}")


class ToolException(ToolgateError):
    """Exception a handler raises to fail with a structured Failure.

    Example:
        >>> raise ToolException.create(ErrorKind.INVALID_ARGUMENTS, "path escapes sandbox")
    """

    __slots__ = ("failure",)

    def __init__(self, failure: Failure) -> None:
        self.failure = failure
        super().__init__(failure.message)

    @classmethod
    def create(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        retryable: bool | None = None,
        details: JsonDict | None = None,
    ) -> Self:
        from toolgate.foundation.core.result import Failure
        return cls(Failure.create(kind, message, retryable=retryable, details=details))
