"""Audit events: one structured record per completed invocation.

The Dispatcher emits an InvocationEvent to an injected AuditSink after every
invocation, whatever the outcome. Sinks are collaborators (metrics pipelines,
audit logs); a sink that raises is logged and otherwise ignored.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat

from toolgate.foundation.errors import ErrorKind

from .logging import BoundLogger, get_logger


class Outcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class InvocationEvent(BaseModel):
    """Structured record of one completed invocation."""

    model_config = ConfigDict(
        frozen=True, extra="forbid",
        json_schema_extra={"title": "Invocation Event"},
    )

    request_id: str
    tool_name: str
    caller_id: str
    duration_ms: NonNegativeFloat
    outcome: Outcome
    error_kind: ErrorKind | None = None
    cached: bool = Field(default=False, description="Served from the idempotency store")


@runtime_checkable
class AuditSink(Protocol):
    """Receives one event per completed invocation."""

    def record(self, event: InvocationEvent) -> None: ...


class LoggingAuditSink:
    """Writes events to the structured logger.

    Successes log at debug, failures at info, so production logs carry
    failures without drowning in routine calls.
    """

    __slots__ = ("_log",)

    def __init__(self, log: BoundLogger | None = None) -> None:
        self._log = log or get_logger("toolgate.audit")

    def record(self, event: InvocationEvent) -> None:
        fields = event.model_dump(mode="json", exclude_none=True)
        if event.outcome is Outcome.SUCCESS:
            self._log.debug("invocation completed", **fields)
        else:
            self._log.info("invocation failed", **fields)
