"""Thread-safe capacity limiter usable from any event loop.

asyncio.Semaphore is bound to a single loop. Dispatch may be driven from
several loops at once (invoke_sync runs each call on its own loop), so the
limiter keeps its count under a threading.Lock and wakes waiters on their own
loop via call_soon_threadsafe.

Tokens are handed directly to the oldest waiter on release (FIFO, no barging).
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from toolgate.foundation.errors import InvariantViolation

if TYPE_CHECKING:
    from types import TracebackType


@dataclass(slots=True, eq=False)
class _Waiter:
    loop: asyncio.AbstractEventLoop
    future: asyncio.Future[None]
    granted: bool = field(default=False)


def _wake(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)


class CapacityLimiter:
    """Bounded token pool with optional bounded wait.

    Example:
        >>> limiter = CapacityLimiter(4)
        >>> if await limiter.acquire(timeout=0.05):
        ...     try:
        ...         ...
        ...     finally:
        ...         limiter.release()

        >>> async with limiter:  # waits without bound
        ...     ...
    """

    __slots__ = ("_total", "_borrowed", "_waiters", "_lock")

    def __init__(self, total_tokens: int) -> None:
        if total_tokens < 1:
            raise ValueError("total_tokens must be >= 1")
        self._total = total_tokens
        self._borrowed = 0
        self._waiters: deque[_Waiter] = deque()
        self._lock = threading.Lock()

    @property
    def total_tokens(self) -> int:
        return self._total

    @property
    def borrowed_tokens(self) -> int:
        return self._borrowed

    @property
    def available_tokens(self) -> int:
        return self._total - self._borrowed

    @property
    def statistics(self) -> dict[str, int]:
        with self._lock:
            return {
                "total_tokens": self._total,
                "borrowed_tokens": self._borrowed,
                "available_tokens": self._total - self._borrowed,
                "waiting": len(self._waiters),
            }

    def try_acquire(self) -> bool:
        """Take a token without waiting. Returns False if none is free."""
        with self._lock:
            if self._borrowed < self._total and not self._waiters:
                self._borrowed += 1
                return True
            return False

    async def acquire(self, timeout: float | None = None) -> bool:
        """Take a token, waiting at most `timeout` seconds (None = forever).

        Returns False on timeout. If the awaiting task is cancelled, no token is
        held afterwards.
        """
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._borrowed < self._total and not self._waiters:
                self._borrowed += 1
                return True
            if timeout is not None and timeout <= 0:
                return False
            waiter = _Waiter(loop, loop.create_future())
            self._waiters.append(waiter)

        try:
            await asyncio.wait_for(waiter.future, timeout)
        except TimeoutError:
            # A token handed over while we were giving up is still ours
            return not self._abandon(waiter)
        except asyncio.CancelledError:
            if not self._abandon(waiter):
                self.release()
            raise
        return True

    def _abandon(self, waiter: _Waiter) -> bool:
        """Drop a waiter that gave up. False if it had already been granted a token."""
        with self._lock:
            if waiter.granted:
                return False
            self._waiters.remove(waiter)
            return True

    def release(self) -> None:
        """Return a token, handing it to the oldest live waiter if any.

        Raises:
            InvariantViolation: More releases than acquisitions
        """
        with self._lock:
            if self._borrowed <= 0:
                raise InvariantViolation("CapacityLimiter released more times than acquired")
            while self._waiters:
                waiter = self._waiters.popleft()
                try:
                    waiter.loop.call_soon_threadsafe(_wake, waiter.future)
                except RuntimeError:
                    continue  # waiter's loop is closed; try the next one
                waiter.granted = True
                return
            self._borrowed -= 1

    async def __aenter__(self) -> CapacityLimiter:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()
