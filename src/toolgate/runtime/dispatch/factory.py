"""Wiring helpers: build a Dispatcher and its collaborators from settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

from toolgate.foundation.config import get_settings
from toolgate.foundation.registry import ToolRegistry
from toolgate.io.idempotency import MemoryIdempotencyStore
from toolgate.runtime.admission import AdmissionController
from toolgate.runtime.execution import WorkerPool
from toolgate.runtime.observability import LoggingAuditSink, configure_logging

from .dispatcher import Dispatcher

if TYPE_CHECKING:
    from toolgate.foundation.config import ToolgateSettings
    from toolgate.foundation.schema import SchemaValidator
    from toolgate.io.idempotency import IdempotencyStore
    from toolgate.runtime.observability import AuditSink, LogRenderer


def create_dispatcher(
    settings: ToolgateSettings | None = None,
    registry: ToolRegistry | None = None,
    *,
    validator: SchemaValidator | None = None,
    idempotency_store: IdempotencyStore | None = None,
    audit_sink: AuditSink | None = None,
) -> Dispatcher:
    """Create a Dispatcher with admission, pool, idempotency store and audit sink from settings.

    Example:
        >>> registry = ToolRegistry()
        >>> dispatcher = create_dispatcher(registry=registry)
        >>> dispatcher.pool.max_workers
        16
    """
    settings = settings or get_settings()
    return Dispatcher(
        registry if registry is not None else ToolRegistry(),
        validator=validator,
        admission=AdmissionController.from_settings(settings.admission),
        pool=WorkerPool.from_settings(settings.pool),
        idempotency_store=(
            idempotency_store if idempotency_store is not None
            else MemoryIdempotencyStore.from_settings(settings.idempotency)
        ),
        audit_sink=audit_sink or LoggingAuditSink(),
        settings=settings.dispatch,
    )


def configure_logging_from_settings(settings: ToolgateSettings | None = None) -> LogRenderer:
    """Apply the logging section of settings to the global logger."""
    settings = settings or get_settings()
    return configure_logging(settings.logging.format, settings.logging.level)
