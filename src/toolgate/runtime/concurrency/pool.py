"""Thread pool for sync handlers.

Async-friendly wrapper around ThreadPoolExecutor. Each submission runs in a
copy of the caller's contextvars context, so scoped log context follows the
call onto the worker thread.

Example:
    >>> async with ThreadPool(max_workers=4) as pool:
    ...     result = await pool.run(blocking_function, arg1, arg2)
"""

from __future__ import annotations

import asyncio
import contextvars
import os
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, ParamSpec, TypeVar

if TYPE_CHECKING:
    from types import TracebackType

T = TypeVar("T")
P = ParamSpec("P")

_CPU_COUNT = os.cpu_count() or 1
DEFAULT_THREAD_WORKERS = min(32, _CPU_COUNT + 4)  # I/O bound heuristic


@dataclass(slots=True)
class ThreadPool:
    """Async-friendly thread pool for blocking handlers.

    The executor is created lazily and shut down on context exit. Threads are
    never interrupted: a submission that ignores cancellation runs to completion.
    """

    max_workers: int = DEFAULT_THREAD_WORKERS
    thread_name_prefix: str = "toolgate-"
    _executor: ThreadPoolExecutor | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix=self.thread_name_prefix,
            )
        return self._executor

    def spawn(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> Future[T]:
        """Submit work and return the underlying concurrent Future.

        Its callbacks fire on the worker thread even if the submitting event
        loop has already closed.
        """
        ctx = contextvars.copy_context()
        return self.executor.submit(ctx.run, func, *args, **kwargs)

    def submit(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> asyncio.Future[T]:
        """Submit work and return an asyncio Future bound to the running loop."""
        return asyncio.wrap_future(self.spawn(func, *args, **kwargs), loop=asyncio.get_running_loop())

    async def run(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        """Run a function in the pool and await its result."""
        return await self.submit(func, *args, **kwargs)

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=cancel_futures)
            self._executor = None

    async def __aenter__(self) -> ThreadPool:
        _ = self.executor
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown(wait=False, cancel_futures=exc_val is not None)
