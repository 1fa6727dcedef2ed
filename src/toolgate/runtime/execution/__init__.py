"""Handler execution under a bounded pool and per-call deadlines."""

from .worker import WorkerPool

__all__ = ["WorkerPool"]
