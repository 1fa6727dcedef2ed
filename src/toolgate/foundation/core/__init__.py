"""Core abstractions: contracts, handlers, content items and results."""

from .content import ContentItem, ImageContent, JsonContent, TextContent, normalize_output, text
from .contract import ToolContract
from .handler import BaseHandler, FunctionHandler, ToolHandler, as_handler, handler_is_async
from .result import Failure, InvocationResult, Success, validate_result

__all__ = [
    # Contracts & handlers
    "ToolContract", "ToolHandler", "BaseHandler", "FunctionHandler", "as_handler", "handler_is_async",
    # Content
    "ContentItem", "TextContent", "JsonContent", "ImageContent", "normalize_output", "text",
    # Results
    "InvocationResult", "Success", "Failure", "validate_result",
]
