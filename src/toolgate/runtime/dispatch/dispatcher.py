"""The single entry point for tool invocation.

Pipeline per request:
    lookup -> validate -> idempotency replay -> admit -> run -> release

Every exit path returns an InvocationResult value. The only exception that
escapes is InvariantViolation, which means the core itself is broken. Task
cancellation (asyncio.CancelledError) propagates after the ticket is released.

Example:
    >>> registry = ToolRegistry()
    >>> @registry.tool("echo", "Echo text back", schema=ParameterSchema.of(text=required(FieldSpec(type="string"))))
    ... def echo(text: str) -> str:
    ...     return text
    >>> dispatcher = Dispatcher(registry)
    >>> result = await dispatcher.call("echo", {"text": "hi"}, caller_id="alice")
    >>> result.text
    'hi'
"""

from __future__ import annotations

import threading
import time
import uuid
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, ValidationError

from toolgate.foundation.config import get_settings
from toolgate.foundation.core import Failure, Success
from toolgate.foundation.errors import ErrorKind, InvariantViolation
from toolgate.foundation.schema import SchemaValidator
from toolgate.io.idempotency import fingerprint
from toolgate.runtime.admission import AdmissionController, Rejection
from toolgate.runtime.concurrency import LoopThread
from toolgate.runtime.execution import WorkerPool
from toolgate.runtime.observability import InvocationEvent, Outcome, get_logger, log_context

if TYPE_CHECKING:
    from types import TracebackType

    from toolgate.foundation.config import DispatchSettings
    from toolgate.foundation.registry import RegisteredTool, ToolRegistry
    from toolgate.io.idempotency import IdempotencyStore, StoredResult
    from toolgate.runtime.concurrency import CancelToken
    from toolgate.runtime.observability import AuditSink

log = get_logger("toolgate.dispatch")


class InvocationRequest(BaseModel):
    """One call to one tool.

    Attributes:
        tool_name: Registered tool name
        arguments: Argument mapping, validated against the tool's schema
        caller_id: Identity used for admission control (None = configured default)
        idempotency_key: Replays a prior success for the same tool and key
        deadline: Seconds the handler may run (None = configured default)
        request_id: Correlation id for logs and audit events
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tool_name: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
    caller_id: str | None = Field(default=None, min_length=1)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=256)
    deadline: PositiveFloat | None = None
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)


def _request_error(exc: ValidationError) -> Failure:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first["loc"]) or "$"
    return Failure.create(
        ErrorKind.INVALID_ARGUMENTS, f"Invalid request: {field}: {first['msg']}",
        retryable=False, details={"field": field, "constraint": "request"},
    )


class Dispatcher:
    """Looks up, validates, admits, executes and reports tool invocations.

    All collaborators are injected; unset ones default to in-process
    implementations built from settings. Dispatchers are safe to share across
    tasks, and across threads through invoke_sync().

    Args:
        registry: Tools available to this dispatcher
        validator: Argument validator
        admission: Per-caller admission control
        pool: Execution pool
        idempotency_store: Replay store (None = no replay)
        audit_sink: Receives one InvocationEvent per invocation (None = none)
        settings: Deadline and caller defaults
    """

    __slots__ = (
        "_registry", "_validator", "_admission", "_pool", "_store", "_sink",
        "_settings", "_pending", "_pending_lock", "_bridge",
    )

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        validator: SchemaValidator | None = None,
        admission: AdmissionController | None = None,
        pool: WorkerPool | None = None,
        idempotency_store: IdempotencyStore | None = None,
        audit_sink: AuditSink | None = None,
        settings: DispatchSettings | None = None,
    ) -> None:
        self._registry = registry
        self._validator = validator or SchemaValidator()
        self._admission = admission or AdmissionController()
        self._pool = pool or WorkerPool()
        self._store = idempotency_store
        self._sink = audit_sink
        self._settings = settings or get_settings().dispatch
        self._pending: set[tuple[str, str]] = set()
        self._pending_lock = threading.Lock()
        self._bridge = LoopThread("toolgate-dispatch")

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def admission(self) -> AdmissionController:
        return self._admission

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    @property
    def idempotency_store(self) -> IdempotencyStore | None:
        return self._store

    # ─────────────────────────────────────────────────────────────────
    # Entry points
    # ─────────────────────────────────────────────────────────────────

    async def invoke(self, request: InvocationRequest, *, cancel: CancelToken | None = None) -> Success | Failure:
        """Run one request to completion and return its result.

        Args:
            request: The invocation
            cancel: Optional token; cancelling it yields a `cancelled` failure
        """
        started = time.monotonic()
        caller_id = request.caller_id or self._settings.default_caller_id
        with log_context(request_id=request.request_id):
            try:
                result, cached = await self._dispatch(request, caller_id, cancel)
            except InvariantViolation:
                raise
            except Exception as exc:
                log.exception("dispatch failed", exc, tool=request.tool_name, caller_id=caller_id)
                result, cached = Failure.create(ErrorKind.INTERNAL_ERROR, "Internal dispatch error"), False
            self._emit(request, caller_id, result, started, cached)
        return result

    async def call(
        self,
        tool_name: str,
        arguments: Any = None,
        *,
        caller_id: str | None = None,
        deadline: float | None = None,
        idempotency_key: str | None = None,
        cancel: CancelToken | None = None,
    ) -> Success | Failure:
        """Convenience wrapper building the InvocationRequest."""
        try:
            request = InvocationRequest(
                tool_name=tool_name,
                arguments={} if arguments is None else arguments,
                caller_id=caller_id,
                deadline=deadline,
                idempotency_key=idempotency_key,
            )
        except ValidationError as exc:
            return _request_error(exc)
        return await self.invoke(request, cancel=cancel)

    def invoke_sync(self, request: InvocationRequest) -> Success | Failure:
        """Blocking invoke() for synchronous callers.

        Runs on the dispatcher's background loop, so a handler abandoned after
        its deadline keeps running there without holding up the caller.
        """
        return self._bridge.run(self.invoke(request))

    def call_sync(
        self,
        tool_name: str,
        arguments: Any = None,
        *,
        caller_id: str | None = None,
        deadline: float | None = None,
        idempotency_key: str | None = None,
    ) -> Success | Failure:
        """Blocking call() for synchronous callers."""
        return self._bridge.run(self.call(
            tool_name, arguments, caller_id=caller_id, deadline=deadline, idempotency_key=idempotency_key,
        ))

    # ─────────────────────────────────────────────────────────────────
    # Pipeline
    # ─────────────────────────────────────────────────────────────────

    async def _dispatch(
        self, request: InvocationRequest, caller_id: str, cancel: CancelToken | None,
    ) -> tuple[Success | Failure, bool]:
        entry = self._registry.get(request.tool_name)
        if entry is None:
            return Failure.create(
                ErrorKind.UNKNOWN_TOOL, f"Unknown tool: '{request.tool_name}'",
                retryable=False, details={"tool_name": request.tool_name},
            ), False

        check = self._validator.validate(entry.contract.parameter_schema, request.arguments)
        if not check:
            return Failure.create(
                ErrorKind.INVALID_ARGUMENTS, check.message, retryable=False, details=check.to_details(),
            ), False

        key = request.idempotency_key
        if key is None or self._store is None:
            return await self._admit_and_run(entry, request, caller_id, cancel), False

        fp = fingerprint(request.arguments)
        if (stored := self._lookup(entry.name, key)) is not None:
            return self._replay(stored, fp), True
        if not self._claim(entry.name, key):
            return Failure.create(
                ErrorKind.THROTTLED, "An invocation with this idempotency key is already in progress",
                details={"reason": "duplicate_in_flight"},
            ), False
        try:
            # A duplicate may have finished between the lookup and the claim
            if (stored := self._lookup(entry.name, key)) is not None:
                return self._replay(stored, fp), True
            result = await self._admit_and_run(entry, request, caller_id, cancel)
            if isinstance(result, Success):
                self._remember(entry.name, key, result, fp)
            return result, False
        finally:
            self._unclaim(entry.name, key)

    async def _admit_and_run(
        self, entry: RegisteredTool, request: InvocationRequest, caller_id: str, cancel: CancelToken | None,
    ) -> Success | Failure:
        match self._admission.admit(caller_id):
            case Rejection() as rejection:
                details: dict[str, Any] = {"reason": str(rejection.reason), "scope": rejection.scope}
                if rejection.retry_after is not None:
                    details["retry_after"] = rejection.retry_after
                return Failure.create(ErrorKind.THROTTLED, rejection.message, details=details)
            case ticket:
                with ticket:
                    result = await self._pool.run(
                        entry.handler, request.arguments, deadline=self._deadline(request.deadline), cancel=cancel,
                    )

        if isinstance(result, Failure) and result.error_kind is ErrorKind.TIMEOUT:
            log.warning("invocation timed out", tool=entry.name, caller_id=caller_id, **result.details)
            retryable = not entry.contract.declares_side_effects or request.idempotency_key is not None
            if retryable != result.retryable:
                result = result.model_copy(update={"retryable": retryable})
        return result

    def _deadline(self, requested: float | None) -> float:
        return min(requested or self._settings.default_deadline, self._settings.max_deadline)

    # ─────────────────────────────────────────────────────────────────
    # Idempotency
    # ─────────────────────────────────────────────────────────────────

    def _replay(self, stored: StoredResult, fp: str) -> Success | Failure:
        if stored.fingerprint != fp:
            return Failure.create(
                ErrorKind.INVALID_ARGUMENTS, "Idempotency key was already used with different arguments",
                retryable=False, details={"field": "idempotency_key", "constraint": "fingerprint"},
            )
        log.debug("idempotent replay")
        return stored.result.model_copy(deep=True)

    def _claim(self, tool_name: str, key: str) -> bool:
        with self._pending_lock:
            if (tool_name, key) in self._pending:
                return False
            self._pending.add((tool_name, key))
            return True

    def _unclaim(self, tool_name: str, key: str) -> None:
        with self._pending_lock:
            self._pending.discard((tool_name, key))

    def _lookup(self, tool_name: str, key: str) -> StoredResult | None:
        try:
            return self._store.get(tool_name, key)  # type: ignore[union-attr]
        except Exception as exc:
            log.warning("idempotency store get failed", tool=tool_name, error=f"{type(exc).__name__}: {exc}")
            return None

    def _remember(self, tool_name: str, key: str, result: Success, fp: str) -> None:
        try:
            self._store.put(tool_name, key, result.model_copy(deep=True), fingerprint=fp)  # type: ignore[union-attr]
        except Exception as exc:
            log.warning("idempotency store put failed", tool=tool_name, error=f"{type(exc).__name__}: {exc}")

    # ─────────────────────────────────────────────────────────────────
    # Audit
    # ─────────────────────────────────────────────────────────────────

    def _emit(
        self, request: InvocationRequest, caller_id: str, result: Success | Failure, started: float, cached: bool,
    ) -> None:
        if self._sink is None:
            return
        event = InvocationEvent(
            request_id=request.request_id,
            tool_name=request.tool_name,
            caller_id=caller_id,
            duration_ms=round((time.monotonic() - started) * 1000, 3),
            outcome=Outcome.SUCCESS if result.is_ok() else Outcome.FAILURE,
            error_kind=result.error_kind if isinstance(result, Failure) else None,
            cached=cached,
        )
        try:
            self._sink.record(event)
        except Exception as exc:
            log.warning("audit sink failed", tool=request.tool_name, error=f"{type(exc).__name__}: {exc}")

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    @property
    def statistics(self) -> dict[str, object]:
        return {
            "tools": len(self._registry),
            "admission": self._admission.statistics,
            "pool": self._pool.statistics,
        }

    def close(self) -> None:
        """Shut down the worker pool and the sync bridge without waiting for abandoned handlers."""
        self._pool.shutdown(wait=False)
        self._bridge.close()

    async def __aenter__(self) -> Dispatcher:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Dispatcher(tools={len(self._registry)}, pool={self._pool!r})"
