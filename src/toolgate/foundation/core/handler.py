"""Tool handlers: the executable half of a registered tool.

A handler is anything with `execute(arguments, cancel)`. It may be sync (run on
a worker thread) or async (run as a task on the caller's loop). Handlers should
poll `cancel.cancelled` or call `cancel.raise_if_cancelled()` at convenient
points; cancellation is cooperative.

Example:
    >>> class Echo(BaseHandler):
    ...     def execute(self, arguments, cancel):
    ...         return arguments["text"]

    >>> handler = FunctionHandler(lambda text: text.upper())
"""

from __future__ import annotations

import functools
import inspect
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

from toolgate.foundation.errors import JsonDict

if TYPE_CHECKING:
    from toolgate.runtime.concurrency import CancelToken


@runtime_checkable
class ToolHandler(Protocol):
    """Protocol for tool handlers."""

    def execute(self, arguments: JsonDict, cancel: CancelToken) -> object:
        """Run the tool. Returns output (or an awaitable of it for async handlers)."""
        ...


class BaseHandler(ABC):
    """Convenience base class for class-based handlers."""

    @abstractmethod
    def execute(self, arguments: JsonDict, cancel: CancelToken) -> object: ...

    @property
    def is_async(self) -> bool:
        return inspect.iscoroutinefunction(self.execute)


class FunctionHandler:
    """Adapts a plain function to the handler protocol.

    Arguments are passed as keyword arguments. If the function declares a
    `cancel` parameter, the CancelToken is passed as well.
    """

    __slots__ = ("func", "_wants_cancel", "_is_async", "__wrapped__")

    def __init__(self, func: Callable[..., object]) -> None:
        self.func = func
        self.__wrapped__ = func
        self._wants_cancel = "cancel" in inspect.signature(func).parameters
        self._is_async = inspect.iscoroutinefunction(func)

    @property
    def is_async(self) -> bool:
        return self._is_async

    def execute(self, arguments: JsonDict, cancel: CancelToken) -> object:
        if self._wants_cancel:
            return self.func(**arguments, cancel=cancel)
        return self.func(**arguments)

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self.func, '__qualname__', self.func)!r})"


def as_handler(obj: ToolHandler | Callable[..., object]) -> ToolHandler:
    """Accept either a handler or a bare callable."""
    if isinstance(obj, ToolHandler):
        return obj
    if callable(obj):
        return FunctionHandler(obj)
    raise TypeError(f"Expected a ToolHandler or callable, got {type(obj).__name__}")


@functools.lru_cache(maxsize=512)
def _coroutine_method(cls: type) -> bool:
    return inspect.iscoroutinefunction(getattr(cls, "execute", None))


def handler_is_async(handler: ToolHandler) -> bool:
    """Whether the handler must be awaited rather than run on a thread."""
    if (flag := getattr(handler, "is_async", None)) is not None:
        return bool(flag)
    return _coroutine_method(type(handler))
