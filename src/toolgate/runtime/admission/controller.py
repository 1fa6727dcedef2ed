"""Per-caller admission control.

Decides, before any work starts, whether a caller may begin another
invocation. Checks run in a fixed order under a single lock:

1. Caller concurrency: in-flight tickets for this caller < max_concurrent_per_caller
2. Global ceiling: in-flight tickets overall < global_max_concurrent (if set)
3. Rate: the caller's rate strategy admits one more call in its window

Rejection is immediate; admit() never waits. The rate budget is only
consumed when every check passes, so a rejection costs the caller nothing.

Example:
    >>> controller = AdmissionController(max_concurrent_per_caller=2)
    >>> match controller.admit("alice"):
    ...     case AdmissionTicket() as ticket:
    ...         with ticket:
    ...             run()
    ...     case Rejection(reason=reason):
    ...         report(reason)
"""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, Literal

from toolgate.foundation.errors import TicketReleaseError
from toolgate.runtime.observability import get_logger

from .rate import RateStrategy, make_strategy

if TYPE_CHECKING:
    from types import TracebackType

    from toolgate.foundation.config import AdmissionSettings

log = get_logger("toolgate.admission")

_ticket_ids = itertools.count(1)


class RejectReason(StrEnum):
    OVER_CONCURRENCY_LIMIT = "over_concurrency_limit"
    OVER_RATE_LIMIT = "over_rate_limit"


@dataclass(frozen=True, slots=True)
class Rejection:
    """Why a caller was not admitted.

    Attributes:
        reason: Which limit was hit
        caller_id: The rejected caller
        scope: "caller" for per-caller limits, "global" for the shared ceiling
        retry_after: Seconds until a rate-limited caller could be admitted
    """

    reason: RejectReason
    caller_id: str
    scope: Literal["caller", "global"] = "caller"
    retry_after: float | None = None

    @property
    def message(self) -> str:
        match self.reason, self.scope:
            case RejectReason.OVER_RATE_LIMIT, _:
                return f"Rate limit exceeded for caller '{self.caller_id}'"
            case _, "global":
                return "Too many concurrent calls across all callers"
            case _:
                return f"Too many concurrent calls for caller '{self.caller_id}'"


class AdmissionTicket:
    """Opaque proof of admission. Release exactly once.

    Usable as a context manager so release happens on every exit path.
    """

    __slots__ = ("id", "caller_id", "issued_at", "_controller", "_released")

    def __init__(self, controller: AdmissionController, caller_id: str, issued_at: float) -> None:
        self.id = next(_ticket_ids)
        self.caller_id = caller_id
        self.issued_at = issued_at
        self._controller = controller
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        self._controller.release(self)

    def __enter__(self) -> AdmissionTicket:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._controller.release(self)

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"AdmissionTicket(id={self.id}, caller_id={self.caller_id!r}, {state})"


class AdmissionController:
    """Per-caller concurrency and rate limiting with an optional global ceiling.

    Thread-safe: every decision and release happens under one lock, so
    concurrent admit() calls can never push a caller past its limit.

    Args:
        max_concurrent_per_caller: In-flight tickets allowed per caller
        global_max_concurrent: In-flight tickets allowed overall (None = unbounded)
        rate: Per-caller rate strategy (None = no rate limit)
        clock: Monotonic clock, injectable for tests
    """

    __slots__ = (
        "_max_per_caller", "_global_max", "_rate", "_clock", "_lock",
        "_in_flight", "_total", "_admitted", "_released", "_rejected",
    )

    def __init__(
        self,
        max_concurrent_per_caller: int = 8,
        global_max_concurrent: int | None = None,
        rate: RateStrategy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrent_per_caller < 1:
            raise ValueError("max_concurrent_per_caller must be >= 1")
        if global_max_concurrent is not None and global_max_concurrent < 1:
            raise ValueError("global_max_concurrent must be >= 1")
        self._max_per_caller = max_concurrent_per_caller
        self._global_max = global_max_concurrent
        self._rate = rate
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight: dict[str, int] = {}
        self._total = 0
        self._admitted = 0
        self._released = 0
        self._rejected: dict[RejectReason, int] = dict.fromkeys(RejectReason, 0)

    @classmethod
    def from_settings(cls, settings: AdmissionSettings, *, clock: Callable[[], float] = time.monotonic) -> AdmissionController:
        return cls(
            max_concurrent_per_caller=settings.max_concurrent_per_caller,
            global_max_concurrent=settings.global_max_concurrent,
            rate=make_strategy(settings.strategy, settings.max_calls, settings.window_seconds),
            clock=clock,
        )

    def admit(self, caller_id: str) -> AdmissionTicket | Rejection:
        """Admit one invocation for `caller_id` or reject immediately."""
        with self._lock:
            now = self._clock()
            rejection = self._check(caller_id, now)
            if rejection is not None:
                self._rejected[rejection.reason] += 1
                self._forget_if_idle(caller_id, now)
            else:
                self._in_flight[caller_id] = self._in_flight.get(caller_id, 0) + 1
                self._total += 1
                self._admitted += 1
                ticket = AdmissionTicket(self, caller_id, now)

        if rejection is not None:
            log.debug("admission rejected", caller_id=caller_id, reason=rejection.reason, scope=rejection.scope)
            return rejection
        return ticket

    def _check(self, caller_id: str, now: float) -> Rejection | None:
        if self._in_flight.get(caller_id, 0) >= self._max_per_caller:
            return Rejection(RejectReason.OVER_CONCURRENCY_LIMIT, caller_id)
        if self._global_max is not None and self._total >= self._global_max:
            return Rejection(RejectReason.OVER_CONCURRENCY_LIMIT, caller_id, scope="global")
        if self._rate is not None and not self._rate.try_acquire(caller_id, now):
            return Rejection(
                RejectReason.OVER_RATE_LIMIT, caller_id,
                retry_after=round(self._rate.retry_after(caller_id, now), 3),
            )
        return None

    def release(self, ticket: AdmissionTicket) -> None:
        """Return a ticket's concurrency slot.

        Raises:
            TicketReleaseError: Ticket already released or issued by another controller
        """
        with self._lock:
            if ticket._controller is not self:
                raise TicketReleaseError(f"Ticket {ticket.id} was not issued by this controller")
            if ticket._released:
                raise TicketReleaseError(f"Ticket {ticket.id} released twice")
            ticket._released = True
            remaining = self._in_flight[ticket.caller_id] - 1
            if remaining:
                self._in_flight[ticket.caller_id] = remaining
            else:
                del self._in_flight[ticket.caller_id]
                self._forget_if_idle(ticket.caller_id, self._clock())
            self._total -= 1
            self._released += 1

    def _forget_if_idle(self, caller_id: str, now: float) -> None:
        if self._rate is not None and caller_id not in self._in_flight:
            self._rate.forget_idle(caller_id, now)

    def in_flight(self, caller_id: str | None = None) -> int:
        """In-flight tickets for one caller, or overall."""
        with self._lock:
            return self._total if caller_id is None else self._in_flight.get(caller_id, 0)

    @property
    def statistics(self) -> dict[str, object]:
        with self._lock:
            return {
                "in_flight": self._total,
                "callers": dict(self._in_flight),
                "admitted": self._admitted,
                "released": self._released,
                "rejected": {str(k): v for k, v in self._rejected.items()},
            }

    def __repr__(self) -> str:
        return (
            f"AdmissionController(max_concurrent_per_caller={self._max_per_caller}, "
            f"global_max_concurrent={self._global_max}, rate={self._rate!r})"
        )
