"""Idempotency stores: replay a successful result for a repeated (tool, key).

The Dispatcher consults the store before running a handler and records every
Success under the request's idempotency key. Only successes are stored, so a
failed call can always be retried with the same key.

Each entry carries a fingerprint of the arguments it was produced from. A key
replayed with different arguments is a caller bug and is reported as such
rather than silently returning a result for other inputs.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

import orjson

if TYPE_CHECKING:
    from toolgate.foundation.config import IdempotencySettings
    from toolgate.foundation.core import Success
    from toolgate.foundation.errors import JsonMapping

_FINGERPRINT_OPTS = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS


def fingerprint(arguments: JsonMapping) -> str:
    """Stable digest of an argument mapping, independent of key order."""
    return hashlib.sha256(orjson.dumps(dict(arguments), option=_FINGERPRINT_OPTS, default=str)).hexdigest()[:32]


@dataclass(frozen=True, slots=True)
class StoredResult:
    result: Success
    fingerprint: str
    expires_at: float


@runtime_checkable
class IdempotencyStore(Protocol):
    """Storage for results keyed by (tool_name, idempotency_key)."""

    def get(self, tool_name: str, key: str) -> StoredResult | None:
        """Return the live entry, or None if absent or expired."""
        ...

    def put(self, tool_name: str, key: str, result: Success, *, fingerprint: str) -> None:
        """Store a successful result."""
        ...


class MemoryIdempotencyStore:
    """Thread-safe in-memory store with TTL expiration.

    When full, expired entries are dropped first, then the quarter of
    entries closest to expiry.

    Args:
        ttl: Seconds a result stays replayable
        max_entries: Capacity before eviction
        clock: Monotonic clock, injectable for tests

    Example:
        >>> store = MemoryIdempotencyStore(ttl=600)
        >>> dispatcher = Dispatcher(registry, idempotency_store=store)
    """

    __slots__ = ("_entries", "_ttl", "_max_entries", "_clock", "_lock", "_hits", "_misses")

    def __init__(self, ttl: float = 3600.0, max_entries: int = 10_000, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0 or max_entries < 1:
            raise ValueError("ttl must be > 0 and max_entries >= 1")
        self._entries: dict[tuple[str, str], StoredResult] = {}
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    @classmethod
    def from_settings(cls, settings: IdempotencySettings) -> MemoryIdempotencyStore:
        return cls(ttl=settings.ttl, max_entries=settings.max_entries)

    def get(self, tool_name: str, key: str) -> StoredResult | None:
        with self._lock:
            entry = self._entries.get((tool_name, key))
            if entry is not None and entry.expires_at <= self._clock():
                del self._entries[(tool_name, key)]
                entry = None
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
            return entry

    def put(self, tool_name: str, key: str, result: Success, *, fingerprint: str) -> None:
        with self._lock:
            now = self._clock()
            if (tool_name, key) not in self._entries and len(self._entries) >= self._max_entries:
                self._evict_unlocked(now)
            self._entries[(tool_name, key)] = StoredResult(result, fingerprint, now + self._ttl)

    def delete(self, tool_name: str, key: str) -> bool:
        with self._lock:
            return self._entries.pop((tool_name, key), None) is not None

    def clear(self, tool_name: str | None = None) -> int:
        """Drop entries (all, or one tool's). Returns count removed."""
        with self._lock:
            if tool_name is None:
                count = len(self._entries)
                self._entries.clear()
                return count
            keys = [k for k in self._entries if k[0] == tool_name]
            for k in keys:
                del self._entries[k]
            return len(keys)

    def _evict_unlocked(self, now: float) -> None:
        """Caller must hold lock."""
        for k in [k for k, v in self._entries.items() if v.expires_at <= now]:
            del self._entries[k]
        if len(self._entries) >= self._max_entries:
            oldest = sorted(self._entries, key=lambda k: self._entries[k].expires_at)
            for k in oldest[: max(1, self._max_entries // 4)]:
                del self._entries[k]

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self._max_entries,
                "ttl": self._ttl,
                "hits": self._hits,
                "misses": self._misses,
            }
