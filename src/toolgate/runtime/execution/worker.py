"""Bounded execution pool for tool handlers.

The pool is the second layer of backpressure below admission control: the
AdmissionController bounds each caller, the pool bounds the whole system.

Run flow:
1. Take a worker slot, waiting at most `admission_wait` (else Throttled)
2. Start the handler: async handlers as tasks, sync handlers on threads
3. Race the handler against its cancel token (deadline or external cancel)
4. Convert the winner into an InvocationResult; the loser is discarded

Known limitation: cancellation is cooperative. A handler that ignores its
CancelToken keeps running after the caller got its Timeout, and keeps its
worker slot until it actually returns.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
from concurrent.futures import Future
from typing import TYPE_CHECKING

from toolgate.foundation.core import Failure, Success, handler_is_async
from toolgate.foundation.errors import ErrorKind, HandlerCancelled, ToolException
from toolgate.runtime.concurrency import DEADLINE, CancelToken, CapacityLimiter, ThreadPool
from toolgate.runtime.observability import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from toolgate.foundation.config import PoolSettings
    from toolgate.foundation.core import ToolHandler
    from toolgate.foundation.errors import JsonDict

log = get_logger("toolgate.pool")


async def _call_async(handler: ToolHandler, arguments: JsonDict, token: CancelToken) -> object:
    return await handler.execute(arguments, token)  # type: ignore[misc]


def _consume(fut: asyncio.Future[object]) -> None:
    """Mark a discarded outcome as retrieved."""
    if not fut.cancelled():
        fut.exception()


class WorkerPool:
    """Fixed-size pool that runs handlers under a deadline.

    Args:
        max_workers: Handlers allowed to execute at once
        admission_wait: Max seconds to wait for a free slot before failing
        cancel_grace: Seconds a cancelled handler gets to wind down before
            the Timeout is reported
        thread_name_prefix: Prefix for sync-handler worker threads

    Example:
        >>> async with WorkerPool(max_workers=4) as pool:
        ...     result = await pool.run(handler, {"text": "hi"}, deadline=2.0)
    """

    __slots__ = ("_limiter", "_threads", "_admission_wait", "_cancel_grace", "_lock", "_counts")

    def __init__(
        self,
        max_workers: int = 16,
        *,
        admission_wait: float = 0.05,
        cancel_grace: float = 0.1,
        thread_name_prefix: str = "toolgate-worker-",
    ) -> None:
        if admission_wait < 0 or cancel_grace < 0:
            raise ValueError("admission_wait and cancel_grace must be >= 0")
        self._limiter = CapacityLimiter(max_workers)
        self._threads = ThreadPool(max_workers=max_workers, thread_name_prefix=thread_name_prefix)
        self._admission_wait = admission_wait
        self._cancel_grace = cancel_grace
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(("completed", "failed", "timed_out", "cancelled", "saturated"), 0)

    @classmethod
    def from_settings(cls, settings: PoolSettings) -> WorkerPool:
        return cls(
            settings.max_workers,
            admission_wait=settings.admission_wait,
            cancel_grace=settings.cancel_grace,
            thread_name_prefix=settings.thread_name_prefix,
        )

    @property
    def max_workers(self) -> int:
        return self._limiter.total_tokens

    @property
    def busy(self) -> int:
        """Slots held by running handlers, including ones abandoned after a timeout."""
        return self._limiter.borrowed_tokens

    @property
    def statistics(self) -> dict[str, int]:
        with self._lock:
            counts = dict(self._counts)
        return {**counts, "max_workers": self.max_workers, "busy": self.busy}

    def _count(self, key: str) -> None:
        with self._lock:
            self._counts[key] += 1

    async def run(
        self,
        handler: ToolHandler,
        arguments: JsonDict,
        *,
        deadline: float | None = None,
        cancel: CancelToken | None = None,
    ) -> Success | Failure:
        """Execute a handler and return its result as a value.

        Args:
            handler: The handler to run
            arguments: Validated arguments
            deadline: Seconds from now the handler may run (None = no limit)
            cancel: Parent token; its deadline and cancellation also apply

        Never raises for handler faults. Cancellation of the awaiting task
        propagates after the handler is signalled.
        """
        if cancel is not None and cancel.cancelled:
            return self._stopped(cancel.reason or DEADLINE, time.monotonic())
        if not await self._limiter.acquire(self._admission_wait):
            self._count("saturated")
            log.debug("pool saturated", max_workers=self.max_workers)
            return Failure.create(
                ErrorKind.THROTTLED,
                "All workers busy, try again shortly",
                details={"reason": "pool_saturated", "max_workers": self.max_workers},
            )

        started = time.monotonic()
        token = self._token(started, deadline, cancel)
        try:
            return await self._execute(handler, arguments, token, started)
        finally:
            if cancel is not None:
                token.unlink(cancel)

    async def _execute(
        self, handler: ToolHandler, arguments: JsonDict, token: CancelToken, started: float,
    ) -> Success | Failure:
        """Run with a slot already held; the slot is released when the handler really finishes."""
        if token.cancelled:
            self._limiter.release()
            return self._stopped(token.reason or DEADLINE, started)
        try:
            work = self._start(handler, arguments, token)
        except BaseException:
            self._limiter.release()
            raise

        stop = asyncio.ensure_future(token.wait_async())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            token.cancel("cancelled")
            work.cancel()
            raise
        finally:
            stop.cancel()

        if work.done():
            return self._outcome(work, token, started)
        return await self._abandon(work, token, started)

    def _token(self, now: float, deadline: float | None, parent: CancelToken | None) -> CancelToken:
        limits = [d for d in (parent and parent.deadline, deadline and now + deadline) if d]
        token = CancelToken(min(limits) if limits else None)
        return token.link(parent) if parent is not None else token

    def _start(self, handler: ToolHandler, arguments: JsonDict, token: CancelToken) -> asyncio.Future[object]:
        if handler_is_async(handler):
            task = asyncio.ensure_future(_call_async(handler, arguments, token))
            task.add_done_callback(lambda _: self._limiter.release())
            task.add_done_callback(_consume)
            return task
        cfut: Future[object] = self._threads.spawn(handler.execute, arguments, token)
        cfut.add_done_callback(lambda _: self._limiter.release())
        work = asyncio.wrap_future(cfut)
        work.add_done_callback(_consume)
        return work

    async def _abandon(self, work: asyncio.Future[object], token: CancelToken, started: float) -> Failure:
        """The token fired first: signal the handler, give it a grace period, report."""
        reason = token.reason or DEADLINE
        token.cancel(reason)
        if isinstance(work, asyncio.Task):
            work.cancel()
        if self._cancel_grace:
            await asyncio.wait({work}, timeout=self._cancel_grace)
        if not work.done():
            log.warning("handler ignored cancellation", reason=reason, grace=self._cancel_grace)
        return self._stopped(reason, started)

    def _stopped(self, reason: str, started: float) -> Failure:
        elapsed = round(time.monotonic() - started, 3)
        if reason == DEADLINE:
            self._count("timed_out")
            return Failure.create(
                ErrorKind.TIMEOUT, f"Handler did not finish before its deadline ({elapsed}s elapsed)",
                details={"elapsed": elapsed},
            )
        self._count("cancelled")
        return Failure.create(ErrorKind.CANCELLED, f"Invocation cancelled: {reason}", details={"reason": reason})

    def _outcome(self, work: asyncio.Future[object], token: CancelToken, started: float) -> Success | Failure:
        if work.cancelled():
            return self._stopped(token.reason or "cancelled", started)

        match work.exception():
            case None:
                pass
            case HandlerCancelled() as exc:
                return self._stopped(exc.reason, started)
            case ToolException() as exc:
                self._count("failed")
                return exc.failure
            case exc:
                self._count("failed")
                log.exception("handler raised", exc, error_type=type(exc).__name__)
                return Failure.create(
                    ErrorKind.INTERNAL_ERROR, f"Handler failed: {type(exc).__name__}",
                    details={"error_type": type(exc).__name__},
                )

        value = work.result()
        if isinstance(value, (Success, Failure)):
            self._count("completed" if value.is_ok() else "failed")
            return value
        if inspect.isawaitable(value):
            if inspect.iscoroutine(value):
                value.close()
            self._count("failed")
            log.error("sync handler returned an awaitable", value_type=type(value).__name__)
            return Failure.create(ErrorKind.INTERNAL_ERROR, "Handler returned an awaitable from a synchronous call")
        try:
            result = Success.of(value)
        except Exception as exc:
            self._count("failed")
            log.exception("handler output could not be converted", exc)
            return Failure.create(ErrorKind.INTERNAL_ERROR, "Handler output could not be converted to content")
        self._count("completed")
        return result

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker threads. Running handlers are not interrupted."""
        self._threads.shutdown(wait=wait)

    async def __aenter__(self) -> WorkerPool:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown(wait=False)

    def __repr__(self) -> str:
        return f"WorkerPool(max_workers={self.max_workers}, busy={self.busy})"
