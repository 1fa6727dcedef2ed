"""Sync/async interoperability.

run_sync() lets synchronous callers (threads, scripts, WSGI handlers) drive the
async dispatch path, including from inside an already-running event loop.

Example:
    >>> result = run_sync(dispatcher.invoke(request))
"""

from __future__ import annotations

import asyncio
import threading
from typing import Coroutine, TypeVar

T = TypeVar("T")


def run_sync(coro: Coroutine[object, object, T]) -> T:
    """Run a coroutine to completion from synchronous code.

    1. No running loop in this thread -> asyncio.run()
    2. Called from within a running loop -> run on a fresh loop in a helper thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    return _run_in_thread_loop(coro)


def _run_in_thread_loop(coro: Coroutine[object, object, T]) -> T:
    """Run coroutine in a new thread with its own event loop."""
    result: T | None = None
    error: BaseException | None = None

    def runner() -> None:
        nonlocal result, error
        try:
            result = asyncio.run(coro)
        except BaseException as e:
            error = e

    thread = threading.Thread(target=runner, name="toolgate-run-sync", daemon=True)
    thread.start()
    thread.join()

    if error is not None:
        raise error
    return result  # type: ignore[return-value]


# ─────────────────────────────────────────────────────────────────────────────
# Thread ↔ Async: Long-lived background loop
# ─────────────────────────────────────────────────────────────────────────────


class LoopThread:
    """Event loop running on a daemon thread, started on first use.

    Unlike run_sync(), finishing a call does not tear the loop down, so tasks
    the call abandoned (e.g. a handler that ignored its timeout) keep running
    in the background instead of blocking the caller until they return.

    Example:
        >>> bridge = LoopThread("toolgate-bridge")
        >>> result = bridge.run(dispatcher.invoke(request))
        >>> bridge.close()
    """

    __slots__ = ("_name", "_loop", "_thread", "_lock")

    def __init__(self, name: str = "toolgate-loop") -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _ensure(self) -> tuple[asyncio.AbstractEventLoop, threading.Thread]:
        with self._lock:
            if self._loop is None or self._thread is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=_serve, args=(loop,), name=self._name, daemon=True)
                thread.start()
                self._loop, self._thread = loop, thread
            return self._loop, self._thread

    def run(self, coro: Coroutine[object, object, T]) -> T:
        """Run a coroutine on the background loop and block until it returns."""
        loop, thread = self._ensure()
        if threading.current_thread() is thread:
            # Blocking the loop on itself would deadlock
            return _run_in_thread_loop(coro)
        return asyncio.run_coroutine_threadsafe(coro, loop).result()

    def close(self, timeout: float = 1.0) -> None:
        """Stop the loop. Tasks still pending are cancelled, not awaited."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not threading.current_thread():
            thread.join(timeout)

    def __repr__(self) -> str:
        return f"LoopThread({self._name!r}, running={self.running})"


def _serve(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    try:
        loop.run_forever()
        for task in asyncio.all_tasks(loop):
            task.cancel()
        loop.run_until_complete(asyncio.sleep(0))
    finally:
        loop.close()
