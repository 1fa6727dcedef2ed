"""Concurrency primitives for dispatch.

Key Components:
    - CancelToken: thread-safe cooperative cancellation with deadlines
    - CapacityLimiter: cross-loop bounded token pool with bounded wait
    - ThreadPool: executor for sync handlers
    - run_sync: drive async code from sync callers
    - LoopThread: long-lived background loop for blocking entry points
"""

from __future__ import annotations

from .cancel import DEADLINE, CancelToken
from .interop import LoopThread, run_sync
from .limiter import CapacityLimiter
from .pool import DEFAULT_THREAD_WORKERS, ThreadPool

__all__ = [
    "CancelToken",
    "DEADLINE",
    "CapacityLimiter",
    "ThreadPool",
    "DEFAULT_THREAD_WORKERS",
    "run_sync",
    "LoopThread",
]
