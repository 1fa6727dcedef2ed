"""IO - external collaborators (idempotency storage)."""

from .idempotency import IdempotencyStore, MemoryIdempotencyStore, StoredResult, fingerprint

__all__ = ["IdempotencyStore", "MemoryIdempotencyStore", "StoredResult", "fingerprint"]
