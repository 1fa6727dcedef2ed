"""Tests for the Dispatcher pipeline.

Validates:
- The echo scenario (success, invalid arguments, unknown tool)
- Invalid arguments never reach the handler
- Admission: N+1 concurrent calls against a limit of N yield one throttle
- Timeouts are reported within a bounded margin of the deadline
- Exactly one ticket release per admission under parallel load
- Idempotent replay and its hardening
- Audit events for every outcome
- Sync callers return at the deadline even when a handler ignores cancellation
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from toolgate.foundation.config import DispatchSettings, ToolgateSettings
from toolgate.foundation.core import Failure, Success, ToolContract
from toolgate.foundation.errors import ErrorKind, InvariantViolation
from toolgate.foundation.registry import ToolRegistry
from toolgate.foundation.schema import FieldSpec, ParameterSchema, required
from toolgate.foundation.testing import MemoryAuditSink, RecordingHandler, sleeping_handler
from toolgate.io.idempotency import MemoryIdempotencyStore
from toolgate.runtime.admission import AdmissionController
from toolgate.runtime.concurrency import CancelToken
from toolgate.runtime.dispatch import Dispatcher, InvocationRequest, create_dispatcher
from toolgate.runtime.execution import WorkerPool
from toolgate.runtime.observability import Outcome


@pytest_asyncio.fixture
async def dispatcher(
    registry: ToolRegistry, audit: MemoryAuditSink, dispatch_settings: DispatchSettings,
) -> AsyncIterator[Dispatcher]:
    d = Dispatcher(
        registry,
        admission=AdmissionController(max_concurrent_per_caller=4),
        pool=WorkerPool(max_workers=8, admission_wait=0.05, cancel_grace=0.05),
        idempotency_store=MemoryIdempotencyStore(),
        audit_sink=audit,
        settings=dispatch_settings,
    )
    async with d:
        yield d


@pytest.fixture
def echo(registry: ToolRegistry, echo_contract: ToolContract) -> RecordingHandler:
    handler = RecordingHandler(side_effect=lambda args: args["text"])
    registry.register(echo_contract, handler)
    return handler


# ═════════════════════════════════════════════════════════════════════════════
# Echo Scenario
# ═════════════════════════════════════════════════════════════════════════════


class TestEchoScenario:
    @pytest.mark.asyncio
    async def test_success_contains_text(self, dispatcher: Dispatcher, echo: RecordingHandler) -> None:
        result = await dispatcher.call("echo", {"text": "hi"})
        assert isinstance(result, Success)
        assert result.text == "hi"
        assert result.to_mcp() == {"content": [{"type": "text", "text": "hi"}], "isError": False}

    @pytest.mark.asyncio
    async def test_missing_argument_is_invalid(self, dispatcher: Dispatcher, echo: RecordingHandler) -> None:
        result = await dispatcher.call("echo", {})
        assert isinstance(result, Failure)
        assert result.error_kind is ErrorKind.INVALID_ARGUMENTS
        assert result.retryable is False
        assert result.details == {"field": "text", "constraint": "required"}
        echo.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher: Dispatcher, echo: RecordingHandler) -> None:
        result = await dispatcher.call("missing", {})
        assert isinstance(result, Failure)
        assert result.error_kind is ErrorKind.UNKNOWN_TOOL
        assert result.retryable is False
        assert result.to_mcp()["isError"] is True


class TestValidationGate:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "arguments",
        [{"text": 1}, {"text": None}, {"text": "hi", "extra": True}, {"other": "x"}],
    )
    async def test_invalid_arguments_never_reach_handler(
        self, dispatcher: Dispatcher, echo: RecordingHandler, arguments: dict[str, object],
    ) -> None:
        result = await dispatcher.call("echo", arguments)
        assert result.error_kind is ErrorKind.INVALID_ARGUMENTS  # type: ignore[union-attr]
        echo.assert_not_called()
        assert dispatcher.admission.statistics["admitted"] == 0

    @pytest.mark.asyncio
    async def test_non_mapping_arguments(self, dispatcher: Dispatcher, echo: RecordingHandler) -> None:
        result = await dispatcher.call("echo", ["hi"])
        assert result.error_kind is ErrorKind.INVALID_ARGUMENTS  # type: ignore[union-attr]
        echo.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_request_fields(self, dispatcher: Dispatcher, echo: RecordingHandler) -> None:
        result = await dispatcher.call("echo", {"text": "hi"}, deadline=-1)
        assert result.error_kind is ErrorKind.INVALID_ARGUMENTS  # type: ignore[union-attr]
        assert result.details["field"] == "deadline"  # type: ignore[union-attr]
        echo.assert_not_called()


# ═════════════════════════════════════════════════════════════════════════════
# Admission
# ═════════════════════════════════════════════════════════════════════════════


class TestAdmission:
    @pytest.mark.asyncio
    async def test_n_plus_one_concurrent_calls_yield_one_throttle(
        self, registry: ToolRegistry, dispatch_settings: DispatchSettings,
    ) -> None:
        limit = 3
        release = threading.Event()
        registry.register(ToolContract(name="block", description="Blocks until released"),
                          RecordingHandler(side_effect=lambda _: release.wait(5) and "ok"))
        d = Dispatcher(
            registry,
            admission=AdmissionController(max_concurrent_per_caller=limit),
            pool=WorkerPool(max_workers=limit + 2),
            settings=dispatch_settings,
        )
        async with d:
            calls = [asyncio.create_task(d.call("block", caller_id="alice")) for _ in range(limit + 1)]
            await asyncio.wait(calls, timeout=1.0, return_when=asyncio.FIRST_COMPLETED)
            release.set()
            results = await asyncio.gather(*calls)

        throttled = [r for r in results if isinstance(r, Failure)]
        assert len(throttled) == 1
        assert throttled[0].error_kind is ErrorKind.THROTTLED
        assert throttled[0].retryable is True
        assert throttled[0].details["reason"] == "over_concurrency_limit"
        assert sum(isinstance(r, Success) for r in results) == limit
        assert d.admission.in_flight() == 0

    @pytest.mark.asyncio
    async def test_other_callers_unaffected(self, dispatcher: Dispatcher, echo: RecordingHandler) -> None:
        result = await dispatcher.call("echo", {"text": "x"}, caller_id="bob")
        assert isinstance(result, Success)

    @pytest.mark.asyncio
    async def test_default_caller_id_applied(
        self, dispatcher: Dispatcher, echo: RecordingHandler, audit: MemoryAuditSink,
    ) -> None:
        await dispatcher.call("echo", {"text": "x"})
        assert audit.last is not None
        assert audit.last.caller_id == "tester"


# ═════════════════════════════════════════════════════════════════════════════
# Deadlines
# ═════════════════════════════════════════════════════════════════════════════


class TestDeadlines:
    @pytest.mark.asyncio
    async def test_timeout_within_margin(self, dispatcher: Dispatcher, registry: ToolRegistry) -> None:
        registry.register(ToolContract(name="slow", description="Sleeps"), sleeping_handler(10.0))
        start = time.monotonic()
        result = await dispatcher.call("slow", deadline=0.2)
        elapsed = time.monotonic() - start

        assert isinstance(result, Failure)
        assert result.error_kind is ErrorKind.TIMEOUT
        assert result.retryable is True
        assert 0.2 <= elapsed < 0.6
        assert dispatcher.admission.in_flight() == 0

    @pytest.mark.asyncio
    async def test_side_effect_timeout_not_retryable_without_key(
        self, dispatcher: Dispatcher, registry: ToolRegistry,
    ) -> None:
        registry.register(
            ToolContract(name="charge", description="Charges a card", declares_side_effects=True),
            sleeping_handler(10.0),
        )
        result = await dispatcher.call("charge", deadline=0.05)
        assert result.error_kind is ErrorKind.TIMEOUT  # type: ignore[union-attr]
        assert result.retryable is False

        keyed = await dispatcher.call("charge", deadline=0.05, idempotency_key="charge-1")
        assert keyed.error_kind is ErrorKind.TIMEOUT  # type: ignore[union-attr]
        assert keyed.retryable is True

    @pytest.mark.asyncio
    async def test_deadline_clamped_to_max(self, registry: ToolRegistry) -> None:
        seen: list[float | None] = []

        def report_deadline(cancel: CancelToken) -> str:
            seen.append(cancel.remaining)
            return "ok"

        registry.register(ToolContract(name="deadline", description="Reports its deadline"), report_deadline)
        d = Dispatcher(registry, settings=DispatchSettings(default_deadline=1.0, max_deadline=2.0))
        async with d:
            await d.call("deadline", deadline=100.0)
            await d.call("deadline")
        assert seen[0] is not None and seen[0] <= 2.0
        assert seen[1] is not None and seen[1] <= 1.0

    @pytest.mark.asyncio
    async def test_external_cancellation(self, dispatcher: Dispatcher, registry: ToolRegistry) -> None:
        registry.register(ToolContract(name="slow", description="Sleeps"), sleeping_handler(10.0))
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "client gone")
        result = await dispatcher.call("slow", cancel=token)
        assert result.error_kind is ErrorKind.CANCELLED  # type: ignore[union-attr]
        assert dispatcher.admission.in_flight() == 0

    @pytest.mark.asyncio
    async def test_task_cancellation_releases_ticket(self, dispatcher: Dispatcher, registry: ToolRegistry) -> None:
        registry.register(ToolContract(name="slow", description="Sleeps"), sleeping_handler(10.0))
        task = asyncio.create_task(dispatcher.call("slow"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert dispatcher.admission.in_flight() == 0

    @pytest.mark.asyncio
    async def test_shared_parent_token_does_not_accumulate_callbacks(
        self, dispatcher: Dispatcher, registry: ToolRegistry, echo: RecordingHandler,
    ) -> None:
        registry.register(ToolContract(name="slow", description="Sleeps"), sleeping_handler(10.0))
        parent = CancelToken()
        for _ in range(200):
            assert isinstance(await dispatcher.call("echo", {"text": "hi"}, cancel=parent), Success)
        timed_out = await dispatcher.call("slow", deadline=0.05, cancel=parent)
        assert timed_out.error_kind is ErrorKind.TIMEOUT  # type: ignore[union-attr]
        assert parent.pending_callbacks == 0
        assert not parent.cancelled


# ═════════════════════════════════════════════════════════════════════════════
# Ticket Invariants
# ═════════════════════════════════════════════════════════════════════════════


class TestTicketInvariants:
    @pytest.mark.asyncio
    async def test_one_release_per_admit_under_parallel_load(self, registry: ToolRegistry) -> None:
        observed: list[int] = []

        def flaky(n: int) -> str:
            observed.append(d.admission.in_flight(f"c{n % 5}"))
            if n % 3 == 0:
                raise ValueError("bad luck")
            time.sleep(0.001)
            return str(n)

        registry.register(
            ToolContract(name="flaky", description="Fails sometimes",
                         parameter_schema=ParameterSchema.of(n=required(FieldSpec(type="integer")))),
            flaky,
        )
        d = Dispatcher(
            registry,
            admission=AdmissionController(max_concurrent_per_caller=3),
            pool=WorkerPool(max_workers=4, admission_wait=0.01),
        )
        async with d:
            results = await asyncio.gather(*(
                d.call("flaky", {"n": i}, caller_id=f"c{i % 5}") for i in range(200)
            ))

        assert observed
        assert 1 <= min(observed) and max(observed) <= 3
        stats = d.admission.statistics
        assert stats["in_flight"] == 0
        assert stats["admitted"] == stats["released"]
        assert len(results) == 200
        kinds = {r.error_kind for r in results if isinstance(r, Failure)}
        assert kinds <= {ErrorKind.INTERNAL_ERROR, ErrorKind.THROTTLED}

    @pytest.mark.asyncio
    async def test_invariant_violation_propagates(self, registry: ToolRegistry, echo_contract: ToolContract) -> None:
        class BrokenAdmission(AdmissionController):
            def release(self, ticket):  # type: ignore[no-untyped-def]
                super().release(ticket)
                super().release(ticket)

        registry.register(echo_contract, RecordingHandler())
        d = Dispatcher(registry, admission=BrokenAdmission())
        async with d:
            with pytest.raises(InvariantViolation):
                await d.call("echo", {"text": "hi"})


# ═════════════════════════════════════════════════════════════════════════════
# Idempotency
# ═════════════════════════════════════════════════════════════════════════════


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_repeat_key_replays_without_second_invocation(
        self, dispatcher: Dispatcher, echo: RecordingHandler, audit: MemoryAuditSink,
    ) -> None:
        first = await dispatcher.call("echo", {"text": "once"}, idempotency_key="k1")
        second = await dispatcher.call("echo", {"text": "once"}, idempotency_key="k1")
        assert first == second
        assert echo.call_count == 1
        assert [e.cached for e in audit.events] == [False, True]

    @pytest.mark.asyncio
    async def test_key_reused_with_different_arguments(self, dispatcher: Dispatcher, echo: RecordingHandler) -> None:
        await dispatcher.call("echo", {"text": "a"}, idempotency_key="k1")
        result = await dispatcher.call("echo", {"text": "b"}, idempotency_key="k1")
        assert result.error_kind is ErrorKind.INVALID_ARGUMENTS  # type: ignore[union-attr]
        assert result.details["field"] == "idempotency_key"  # type: ignore[union-attr]
        assert echo.call_count == 1

    @pytest.mark.asyncio
    async def test_keys_scoped_per_tool(self, dispatcher: Dispatcher, registry: ToolRegistry, echo: RecordingHandler) -> None:
        other = RecordingHandler(side_effect=lambda args: args["text"].upper())
        registry.register(ToolContract(name="shout", description="Shout",
                                       parameter_schema=ParameterSchema.of(text=required(FieldSpec(type="string")))), other)
        await dispatcher.call("echo", {"text": "hi"}, idempotency_key="k")
        result = await dispatcher.call("shout", {"text": "hi"}, idempotency_key="k")
        assert result.text == "HI"  # type: ignore[union-attr]
        assert other.call_count == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_stored(self, dispatcher: Dispatcher, registry: ToolRegistry) -> None:
        handler = RecordingHandler(raises=RuntimeError("transient"))
        registry.register(ToolContract(name="flaky", description="Fails"), handler)
        await dispatcher.call("flaky", idempotency_key="k")
        await dispatcher.call("flaky", idempotency_key="k")
        assert handler.call_count == 2

    @pytest.mark.asyncio
    async def test_replayed_content_is_isolated_between_callers(
        self, dispatcher: Dispatcher, registry: ToolRegistry,
    ) -> None:
        handler = RecordingHandler(side_effect=lambda args: {"rows": [1]})
        registry.register(ToolContract(name="rows", description="Rows"), handler)
        first = await dispatcher.call("rows", idempotency_key="k")
        second = await dispatcher.call("rows", idempotency_key="k")

        first.content[0].data["rows"].append(2)  # type: ignore[union-attr]
        second.content[0].data["rows"].append(3)  # type: ignore[union-attr]
        third = await dispatcher.call("rows", idempotency_key="k")

        assert third.content[0].data == {"rows": [1]}  # type: ignore[union-attr]
        assert handler.call_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_is_throttled(self, dispatcher: Dispatcher, registry: ToolRegistry) -> None:
        registry.register(ToolContract(name="slow", description="Sleeps"), sleeping_handler(0.2))
        first = asyncio.create_task(dispatcher.call("slow", idempotency_key="dup"))
        await asyncio.sleep(0.05)
        second = await dispatcher.call("slow", idempotency_key="dup")
        assert second.error_kind is ErrorKind.THROTTLED  # type: ignore[union-attr]
        assert second.details["reason"] == "duplicate_in_flight"  # type: ignore[union-attr]
        assert isinstance(await first, Success)
        third = await dispatcher.call("slow", idempotency_key="dup")
        assert third == await first

    @pytest.mark.asyncio
    async def test_store_failure_degrades_to_normal_execution(
        self, registry: ToolRegistry, echo: RecordingHandler,
    ) -> None:
        class BrokenStore:
            def get(self, tool_name: str, key: str) -> None:
                raise ConnectionError("store down")

            def put(self, *args: object, **kwargs: object) -> None:
                raise ConnectionError("store down")

        d = Dispatcher(registry, idempotency_store=BrokenStore())
        async with d:
            result = await d.call("echo", {"text": "hi"}, idempotency_key="k")
        assert isinstance(result, Success)
        assert echo.call_count == 1


# ═════════════════════════════════════════════════════════════════════════════
# Audit & Sync Bridge
# ═════════════════════════════════════════════════════════════════════════════


class TestAudit:
    @pytest.mark.asyncio
    async def test_one_event_per_invocation(
        self, dispatcher: Dispatcher, echo: RecordingHandler, audit: MemoryAuditSink,
    ) -> None:
        await dispatcher.call("echo", {"text": "hi"}, caller_id="alice")
        await dispatcher.call("echo", {})
        await dispatcher.call("nope", {})

        assert audit.outcomes() == [Outcome.SUCCESS, Outcome.FAILURE, Outcome.FAILURE]
        assert [e.error_kind for e in audit.failures()] == [ErrorKind.INVALID_ARGUMENTS, ErrorKind.UNKNOWN_TOOL]
        first = audit.events[0]
        assert (first.tool_name, first.caller_id) == ("echo", "alice")
        assert first.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_request_id_carried(self, dispatcher: Dispatcher, echo: RecordingHandler, audit: MemoryAuditSink) -> None:
        request = InvocationRequest(tool_name="echo", arguments={"text": "x"}, request_id="req-42")
        await dispatcher.invoke(request)
        assert audit.last.request_id == "req-42"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_affect_result(self, registry: ToolRegistry, echo: RecordingHandler) -> None:
        class BrokenSink:
            def record(self, event: object) -> None:
                raise RuntimeError("sink down")

        d = Dispatcher(registry, audit_sink=BrokenSink())
        async with d:
            assert isinstance(await d.call("echo", {"text": "hi"}), Success)


def test_invoke_sync(registry: ToolRegistry, echo: RecordingHandler) -> None:
    d = Dispatcher(registry)
    try:
        assert d.call_sync("echo", {"text": "sync"}).text == "sync"  # type: ignore[union-attr]
        result = d.invoke_sync(InvocationRequest(tool_name="echo", arguments={"text": "again"}))
        assert result.text == "again"  # type: ignore[union-attr]
    finally:
        d.close()


def test_call_sync_returns_at_deadline_despite_stubborn_async_handler(
    registry: ToolRegistry, echo: RecordingHandler,
) -> None:
    registry.register(ToolContract(name="stubborn", description="Ignores cancellation"),
                      sleeping_handler(2.0, is_async=True, cooperative=False))
    d = Dispatcher(registry, pool=WorkerPool(cancel_grace=0.05))
    try:
        start = time.monotonic()
        result = d.call_sync("stubborn", deadline=0.1)
        elapsed = time.monotonic() - start
        assert result.error_kind is ErrorKind.TIMEOUT  # type: ignore[union-attr]
        assert elapsed < 1.0
        assert d.call_sync("echo", {"text": "after"}).text == "after"  # type: ignore[union-attr]
    finally:
        d.close()


def test_invoke_sync_from_many_threads(registry: ToolRegistry, echo: RecordingHandler) -> None:
    d = Dispatcher(registry, admission=AdmissionController(max_concurrent_per_caller=100))
    results: list[object] = []
    lock = threading.Lock()

    def worker(i: int) -> None:
        r = d.call_sync("echo", {"text": str(i)})
        with lock:
            results.append(r)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    d.close()

    assert len(results) == 20
    assert d.admission.in_flight() == 0


@pytest.mark.asyncio
async def test_create_dispatcher_from_settings(registry: ToolRegistry, echo: RecordingHandler) -> None:
    settings = ToolgateSettings(admission={"max_concurrent_per_caller": 2}, pool={"max_workers": 3})
    d = create_dispatcher(settings, registry)
    async with d:
        assert d.pool.max_workers == 3
        assert d.idempotency_store is not None
        assert isinstance(await d.call("echo", {"text": "hi"}, idempotency_key="k"), Success)
