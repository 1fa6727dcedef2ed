"""Dispatch: the single invocation entry point and its factory."""

from .dispatcher import Dispatcher, InvocationRequest
from .factory import configure_logging_from_settings, create_dispatcher

__all__ = ["Dispatcher", "InvocationRequest", "create_dispatcher", "configure_logging_from_settings"]
