"""Tests for the in-memory idempotency store and argument fingerprints."""

from __future__ import annotations

import pytest

from toolgate.foundation.config import IdempotencySettings
from toolgate.foundation.core import Success
from toolgate.io.idempotency import IdempotencyStore, MemoryIdempotencyStore, fingerprint


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryIdempotencyStore:
    return MemoryIdempotencyStore(ttl=10.0, max_entries=8, clock=clock)


def _ok(text: str) -> Success:
    return Success.of(text)


# ═════════════════════════════════════════════════════════════════════════════
# Fingerprints
# ═════════════════════════════════════════════════════════════════════════════


def test_fingerprint_ignores_key_order() -> None:
    assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})


def test_fingerprint_distinguishes_values() -> None:
    assert fingerprint({"a": 1}) != fingerprint({"a": 2})
    assert fingerprint({"a": 1}) != fingerprint({"a": "1"})


def test_fingerprint_nested_and_empty() -> None:
    assert fingerprint({}) == fingerprint({})
    assert fingerprint({"q": {"x": 1, "y": 2}}) == fingerprint({"q": {"y": 2, "x": 1}})
    assert len(fingerprint({"a": 1})) == 32


# ═════════════════════════════════════════════════════════════════════════════
# MemoryIdempotencyStore
# ═════════════════════════════════════════════════════════════════════════════


class TestMemoryStore:
    def test_satisfies_protocol(self, store: MemoryIdempotencyStore) -> None:
        assert isinstance(store, IdempotencyStore)

    def test_put_then_get(self, store: MemoryIdempotencyStore) -> None:
        store.put("echo", "k1", _ok("hi"), fingerprint="fp")
        entry = store.get("echo", "k1")
        assert entry is not None
        assert entry.result.text == "hi"
        assert entry.fingerprint == "fp"

    def test_keys_scoped_by_tool(self, store: MemoryIdempotencyStore) -> None:
        store.put("echo", "k", _ok("a"), fingerprint="fp")
        assert store.get("shout", "k") is None

    def test_entries_expire(self, store: MemoryIdempotencyStore, clock: FakeClock) -> None:
        store.put("echo", "k", _ok("a"), fingerprint="fp")
        clock.now = 9.9
        assert store.get("echo", "k") is not None
        clock.now = 10.0
        assert store.get("echo", "k") is None
        assert store.size == 0

    def test_overwrite_refreshes_ttl(self, store: MemoryIdempotencyStore, clock: FakeClock) -> None:
        store.put("echo", "k", _ok("a"), fingerprint="fp")
        clock.now = 8.0
        store.put("echo", "k", _ok("b"), fingerprint="fp")
        clock.now = 15.0
        entry = store.get("echo", "k")
        assert entry is not None
        assert entry.result.text == "b"

    def test_eviction_drops_expired_first(self, store: MemoryIdempotencyStore, clock: FakeClock) -> None:
        for i in range(4):
            store.put("t", f"old{i}", _ok("x"), fingerprint="fp")
        clock.now = 5.0
        for i in range(4):
            store.put("t", f"new{i}", _ok("x"), fingerprint="fp")
        clock.now = 11.0
        store.put("t", "latest", _ok("x"), fingerprint="fp")
        assert store.size == 5
        assert store.get("t", "new0") is not None

    def test_eviction_drops_oldest_quarter_when_full(self, store: MemoryIdempotencyStore, clock: FakeClock) -> None:
        for i in range(8):
            clock.now = float(i) / 10
            store.put("t", f"k{i}", _ok("x"), fingerprint="fp")
        store.put("t", "k8", _ok("x"), fingerprint="fp")
        assert store.size == 7
        assert store.get("t", "k0") is None
        assert store.get("t", "k1") is None
        assert store.get("t", "k8") is not None

    def test_delete_and_clear(self, store: MemoryIdempotencyStore) -> None:
        store.put("a", "1", _ok("x"), fingerprint="fp")
        store.put("a", "2", _ok("x"), fingerprint="fp")
        store.put("b", "1", _ok("x"), fingerprint="fp")
        assert store.delete("a", "1") is True
        assert store.delete("a", "1") is False
        assert store.clear("a") == 1
        assert store.clear() == 1
        assert store.size == 0

    def test_stats_count_hits_and_misses(self, store: MemoryIdempotencyStore) -> None:
        store.put("t", "k", _ok("x"), fingerprint="fp")
        store.get("t", "k")
        store.get("t", "missing")
        stats = store.stats()
        assert (stats["hits"], stats["misses"], stats["entries"]) == (1, 1, 1)

    def test_from_settings(self) -> None:
        store = MemoryIdempotencyStore.from_settings(IdempotencySettings(ttl=5.0, max_entries=2))
        assert store.stats()["ttl"] == 5.0
        assert store.stats()["max_entries"] == 2

    @pytest.mark.parametrize("kwargs", [{"ttl": 0}, {"max_entries": 0}])
    def test_rejects_bad_limits(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ValueError):
            MemoryIdempotencyStore(**kwargs)
