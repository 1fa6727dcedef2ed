"""Cooperative cancellation tokens with deadlines.

A CancelToken is handed to every handler. It is thread-safe, so sync handlers
running on worker threads and async handlers on the event loop observe it the
same way:

    >>> def handler(arguments, cancel):
    ...     for chunk in work(arguments):
    ...         cancel.raise_if_cancelled()
    ...         process(chunk)

Cancellation is a request, not a kill. A handler that never checks its token
keeps running after the caller has been told it timed out.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable

from toolgate.foundation.errors import HandlerCancelled

DEADLINE = "deadline"


class CancelToken:
    """Thread-safe cancellation signal with an optional monotonic deadline.

    Args:
        deadline: Absolute `time.monotonic()` instant after which the token
            counts as cancelled (None = no deadline)
    """

    __slots__ = ("_event", "_deadline", "_reason", "_lock", "_callbacks")

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = deadline
        self._reason: str | None = None
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[str], None]] = []

    @classmethod
    def after(cls, seconds: float) -> CancelToken:
        """Token whose deadline is `seconds` from now."""
        return cls(time.monotonic() + seconds)

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or None without one."""
        return None if self._deadline is None else max(0.0, self._deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        """True once cancel() was called or the deadline passed."""
        return self._event.is_set() or self.expired

    @property
    def reason(self) -> str | None:
        if self._reason is None and self.expired:
            return DEADLINE
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Request cancellation. Returns True if this call was the first."""
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb(reason)
        return True

    def raise_if_cancelled(self) -> None:
        """Raise HandlerCancelled if cancellation was requested or the deadline passed."""
        if self.cancelled:
            raise HandlerCancelled(self.reason or DEADLINE)

    def add_callback(self, callback: Callable[[str], None]) -> None:
        """Run `callback(reason)` on cancel (immediately if already cancelled)."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
            reason = self._reason or "cancelled"
        callback(reason)

    def remove_callback(self, callback: Callable[[str], None]) -> bool:
        """Forget a pending callback. Returns False if it was not registered (or already ran)."""
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                return False
            return True

    @property
    def pending_callbacks(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def link(self, parent: CancelToken) -> CancelToken:
        """Cancel this token whenever `parent` is cancelled. Returns self."""
        parent.add_callback(self.cancel)
        return self

    def unlink(self, parent: CancelToken) -> None:
        """Undo link() so a long-lived parent does not keep this token alive."""
        parent.remove_callback(self.cancel)

    def wait(self, timeout: float | None = None) -> bool:
        """Block the current thread until cancelled or timeout. Returns cancelled state."""
        end = None if timeout is None else time.monotonic() + timeout
        while not self.cancelled:
            left = None if end is None else end - time.monotonic()
            if left is not None and left <= 0:
                return False
            limits = [x for x in (self.remaining, left) if x is not None]
            self._event.wait(min(limits) if limits else None)
        return True

    async def wait_async(self) -> str:
        """Suspend until cancelled (or the deadline passes). Returns the reason."""
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[str] = loop.create_future()

        def _wake(reason: str) -> None:
            try:
                loop.call_soon_threadsafe(lambda: fut.done() or fut.set_result(reason))
            except RuntimeError:
                pass  # loop closed; nobody is waiting anymore

        self.add_callback(_wake)
        try:
            return await asyncio.wait_for(fut, self.remaining)
        except TimeoutError:
            return DEADLINE

    def __repr__(self) -> str:
        state = f"cancelled={self.reason!r}" if self.cancelled else "active"
        return f"CancelToken({state}, remaining={self.remaining})"
