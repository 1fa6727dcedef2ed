"""Invocation results: a tagged union of Success and Failure.

Every exit path of the Dispatcher produces one of these values. Both variants
are frozen Pydantic models, so equal results compare equal and can be cached
by an idempotency store as-is.
"""

from __future__ import annotations

from typing import Annotated, Literal, Self, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from toolgate.foundation.errors import EMPTY_DETAILS, ErrorKind, JsonDict, is_retryable

from .content import ContentItem, TextContent, normalize_output


class Success(BaseModel):
    """Successful invocation carrying ordered content items."""

    model_config = ConfigDict(
        frozen=True, extra="forbid",
        json_schema_extra={"title": "Invocation Success"},
    )

    status: Literal["success"] = "success"
    content: tuple[ContentItem, ...] = ()

    @classmethod
    def of(cls, value: object) -> Self:
        """Build from any handler output (see normalize_output)."""
        return cls(content=normalize_output(value))

    @property
    def text(self) -> str:
        """Concatenated text of all TextContent items."""
        return "\n".join(c.text for c in self.content if isinstance(c, TextContent))

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def to_mcp(self) -> JsonDict:
        return {"content": [c.to_mcp() for c in self.content], "isError": False}


class Failure(BaseModel):
    """Failed invocation with a stable kind and retry hint.

    Attributes:
        error_kind: Machine-readable classification
        message: Human-readable explanation
        retryable: Whether the caller may retry (possibly after backoff)
        details: Structured extras, e.g. {"field": "text", "constraint": "required"}
    """

    model_config = ConfigDict(
        frozen=True, str_strip_whitespace=True, extra="forbid",
        json_schema_extra={
            "title": "Invocation Failure",
            "examples": [{"error_kind": "throttled", "message": "Too many concurrent calls", "retryable": True}],
        },
    )

    status: Literal["failure"] = "failure"
    error_kind: ErrorKind
    message: Annotated[str, Field(min_length=1)]
    retryable: bool
    details: JsonDict = Field(default_factory=dict)

    @classmethod
    def create(
        cls,
        kind: ErrorKind,
        message: str,
        *,
        retryable: bool | None = None,
        details: JsonDict | None = None,
    ) -> Self:
        """Factory defaulting retryable from the kind."""
        return cls(
            error_kind=kind,
            message=message,
            retryable=is_retryable(kind) if retryable is None else retryable,
            details=details or EMPTY_DETAILS,
        )

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def to_mcp(self) -> JsonDict:
        return {"content": [{"type": "text", "text": self.render()}], "isError": True}

    def render(self) -> str:
        """Format for display to a model or a human."""
        hint = " (retryable)" if self.retryable else ""
        return f"[{self.error_kind}] {self.message}{hint}"

    __str__ = render


InvocationResult = Annotated[Union[Success, Failure], Field(discriminator="status")]

_ResultAdapter: TypeAdapter[Success | Failure] = TypeAdapter(InvocationResult)


def validate_result(data: JsonDict) -> Success | Failure:
    """Parse a dumped result (e.g. from an external store) back into a model."""
    return _ResultAdapter.validate_python(data)
