"""Typed content items carried by a successful invocation.

Handlers may return plain Python values; `normalize_output` turns them into
an ordered tuple of content items:

    str                 -> TextContent
    ContentItem         -> itself
    sequence of items   -> items, in order
    other JSON values   -> JsonContent
    None                -> no content
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Annotated, Any, Literal, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field

from toolgate.foundation.errors import JsonDict


class TextContent(BaseModel):
    """Plain text content."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["text"] = "text"
    text: str

    def to_mcp(self) -> JsonDict:
        return {"type": "text", "text": self.text}


class JsonContent(BaseModel):
    """Structured JSON content. Rendered as serialized text for MCP clients."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["json"] = "json"
    data: Any

    def to_mcp(self) -> JsonDict:
        return {"type": "text", "text": orjson.dumps(self.data, option=orjson.OPT_NON_STR_KEYS).decode()}


class ImageContent(BaseModel):
    """Base64-encoded image content."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: Literal["image"] = "image"
    data: Annotated[str, Field(min_length=1, description="Base64-encoded bytes")]
    mime_type: Annotated[str, Field(pattern=r"^image/[\w.+-]+$")] = "image/png"

    def to_mcp(self) -> JsonDict:
        return {"type": "image", "data": self.data, "mimeType": self.mime_type}


ContentItem = Annotated[Union[TextContent, JsonContent, ImageContent], Field(discriminator="type")]
_CONTENT_TYPES = (TextContent, JsonContent, ImageContent)


def text(value: str) -> TextContent:
    """Create TextContent concisely."""
    return TextContent(text=value)


def normalize_output(value: object) -> tuple[ContentItem, ...]:
    """Convert a handler's return value into ordered content items."""
    match value:
        case None:
            return ()
        case str():
            return (TextContent(text=value),)
        case TextContent() | JsonContent() | ImageContent():
            return (value,)
        case Sequence() if value and all(isinstance(v, _CONTENT_TYPES) for v in value):
            return tuple(value)  # type: ignore[arg-type]
        case _:
            return (JsonContent(data=value),)
