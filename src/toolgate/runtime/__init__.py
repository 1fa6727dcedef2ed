"""Runtime - execution machinery for toolgate.

Contains: concurrency primitives, admission control, the worker pool,
the dispatcher, and observability.
"""

from __future__ import annotations

__all__ = [
    # Concurrency
    "CancelToken", "CapacityLimiter", "ThreadPool", "run_sync",
    # Admission
    "AdmissionController", "AdmissionTicket", "Rejection", "RejectReason",
    # Execution
    "WorkerPool",
    # Dispatch
    "Dispatcher", "InvocationRequest", "create_dispatcher",
    # Observability
    "get_logger", "configure_logging", "AuditSink", "InvocationEvent",
]


def __getattr__(name: str):
    """Lazy imports to avoid circular dependencies with foundation.registry."""
    if name in ("CancelToken", "CapacityLimiter", "ThreadPool", "run_sync"):
        from . import concurrency
        return getattr(concurrency, name)

    if name in ("AdmissionController", "AdmissionTicket", "Rejection", "RejectReason"):
        from . import admission
        return getattr(admission, name)

    if name == "WorkerPool":
        from . import execution
        return getattr(execution, name)

    if name in ("Dispatcher", "InvocationRequest", "create_dispatcher"):
        from . import dispatch
        return getattr(dispatch, name)

    if name in ("get_logger", "configure_logging", "AuditSink", "InvocationEvent"):
        from . import observability
        return getattr(observability, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
