"""Idempotency stores for replaying successful results."""

from .store import IdempotencyStore, MemoryIdempotencyStore, StoredResult, fingerprint

__all__ = ["IdempotencyStore", "MemoryIdempotencyStore", "StoredResult", "fingerprint"]
