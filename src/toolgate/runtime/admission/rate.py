"""Per-key admission rate strategies.

Both strategies bound admissions per unit time per key. They are not
thread-safe on their own; AdmissionController calls them under its lock.

- SlidingWindow: at most `max_calls` admissions in any trailing `window_seconds`
- TokenBucket: bursts up to `max_calls`, refilling at max_calls/window_seconds per second
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class RateStrategy(Protocol):
    """Protocol for per-key rate strategies."""

    def try_acquire(self, key: str, now: float) -> bool:
        """Record one admission for `key` if within limits. Returns False otherwise."""
        ...

    def retry_after(self, key: str, now: float) -> float:
        """Seconds until `key` could be admitted again (0 if now)."""
        ...

    def forget_idle(self, key: str, now: float) -> bool:
        """Drop state for `key` if it carries no information. Returns True if dropped."""
        ...


@dataclass(slots=True)
class SlidingWindow:
    """Sliding-window log of admission timestamps per key."""

    max_calls: int = 100
    window_seconds: float = 60.0
    _timestamps: dict[str, deque[float]] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if self.max_calls < 1 or self.window_seconds <= 0:
            raise ValueError("max_calls must be >= 1 and window_seconds > 0")

    def _evict(self, key: str, now: float) -> deque[float]:
        bucket = self._timestamps.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while bucket and bucket[0] <= cutoff:
            bucket.popleft()
        return bucket

    def try_acquire(self, key: str, now: float) -> bool:
        bucket = self._evict(key, now)
        if len(bucket) >= self.max_calls:
            return False
        bucket.append(now)
        return True

    def retry_after(self, key: str, now: float) -> float:
        bucket = self._evict(key, now)
        if len(bucket) < self.max_calls:
            return 0.0
        return max(0.0, bucket[0] + self.window_seconds - now)

    def forget_idle(self, key: str, now: float) -> bool:
        if self._evict(key, now):
            return False
        del self._timestamps[key]
        return True


@dataclass(slots=True)
class TokenBucket:
    """Token bucket per key, starting full."""

    max_calls: int = 100
    window_seconds: float = 60.0
    _buckets: dict[str, tuple[float, float]] = field(default_factory=dict, repr=False)  # key -> (tokens, last)

    def __post_init__(self) -> None:
        if self.max_calls < 1 or self.window_seconds <= 0:
            raise ValueError("max_calls must be >= 1 and window_seconds > 0")

    @property
    def rate(self) -> float:
        """Tokens added per second."""
        return self.max_calls / self.window_seconds

    def _refill(self, key: str, now: float) -> float:
        tokens, last = self._buckets.get(key, (float(self.max_calls), now))
        return min(float(self.max_calls), tokens + max(0.0, now - last) * self.rate)

    def try_acquire(self, key: str, now: float) -> bool:
        tokens = self._refill(key, now)
        if tokens < 1.0:
            self._buckets[key] = (tokens, now)
            return False
        self._buckets[key] = (tokens - 1.0, now)
        return True

    def retry_after(self, key: str, now: float) -> float:
        tokens = self._refill(key, now)
        return 0.0 if tokens >= 1.0 else (1.0 - tokens) / self.rate

    def forget_idle(self, key: str, now: float) -> bool:
        if key in self._buckets and self._refill(key, now) >= self.max_calls:
            del self._buckets[key]
            return True
        return False


def make_strategy(strategy: str, max_calls: int, window_seconds: float) -> RateStrategy:
    """Build a strategy by name ("sliding" or "token_bucket")."""
    match strategy:
        case "sliding": return SlidingWindow(max_calls, window_seconds)
        case "token_bucket": return TokenBucket(max_calls, window_seconds)
        case _: raise ValueError(f"Unknown rate strategy: {strategy}. Use 'sliding' or 'token_bucket'")
