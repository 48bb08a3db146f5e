"""Tests for the execution coordinator and backends."""

import asyncio
import time

import httpx
import pytest

from core.errors import (
    BackendExecutionError,
    BackendUnavailableError,
    NotFoundError,
    ToolCallCancelled,
    ToolCallTimeout,
    TransientBackendError,
)
from core.execution import Backend, ChainStep, ExecutionCoordinator, HttpBackend, InvocationContext
from core.index import ToolIndex

from helpers import make_tool


class SleepyBackend(Backend):
    """Ignores cancellation and finishes whenever it likes."""

    name = "sleepy"
    supports_cancellation = False

    def __init__(self, duration: float = 1.0):
        self.duration = duration
        self.finished = False

    async def start(self, descriptor, arguments, token, progress):
        await asyncio.sleep(self.duration)
        self.finished = True
        return "done"


class CooperativeBackend(Backend):
    name = "coop"
    supports_cancellation = True

    def __init__(self):
        self.seen_descriptor = None
        self.started = asyncio.Event()

    async def start(self, descriptor, arguments, token, progress):
        self.seen_descriptor = descriptor
        self.started.set()
        try:
            await asyncio.wait_for(token.wait(), timeout=arguments.get("duration", 5.0))
        except asyncio.TimeoutError:
            return {"echo": arguments}
        raise ToolCallCancelled("stopped", reason=token.reason or "")


class FlakyBackend(Backend):
    name = "flaky"

    def __init__(self, failures: int, retry_safe: bool = True):
        self.failures = failures
        self.retry_safe = retry_safe
        self.calls = 0

    async def start(self, descriptor, arguments, token, progress):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientBackendError("connection reset")
        return "ok"


class ProgressBackend(Backend):
    name = "progress"
    supports_progress = True

    async def start(self, descriptor, arguments, token, progress):
        for i in range(1, 6):
            await progress.report(i, 5)
        return "finished"


class SilentBackend(Backend):
    name = "silent"

    def __init__(self):
        self.progress_arg = "unset"

    async def start(self, descriptor, arguments, token, progress):
        self.progress_arg = progress
        return None


class CrashingBackend(Backend):
    name = "crash"

    async def start(self, descriptor, arguments, token, progress):
        raise KeyError("internal detail")


class AddBackend(Backend):
    """Adds ``n`` to the previous step's value."""

    name = "add"
    supports_cancellation = True

    def __init__(self, cancel_after: bool = False):
        self.cancel_after = cancel_after
        self.calls = 0

    async def start(self, descriptor, arguments, token, progress):
        self.calls += 1
        if self.cancel_after:
            token.cancel("stop after this step")
        return arguments.get("previous", 0) + arguments.get("n", 1)


def build(*backends, **kwargs):
    index = ToolIndex()
    for backend in backends:
        index.register(make_tool(backend.name, namespace="test", backend=backend.name))
    coordinator = ExecutionCoordinator(index, list(backends), cancel_grace=kwargs.pop("cancel_grace", 0.05), **kwargs)
    return index, coordinator


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    async def test_success(self):
        _, coordinator = build(CooperativeBackend())
        result = await coordinator.invoke("test:coop", {"duration": 0.01})
        assert result.value == {"echo": {"duration": 0.01}}
        assert result.backend == "coop"
        assert result.descriptor.tool_id == "test:coop"

    async def test_unknown_tool(self):
        _, coordinator = build()
        with pytest.raises(NotFoundError):
            await coordinator.invoke("test:missing")

    async def test_missing_backend(self):
        index, coordinator = build()
        index.register(make_tool("orphan", backend="nowhere"))
        with pytest.raises(BackendUnavailableError):
            await coordinator.invoke("orphan")

    async def test_descriptor_resolved_once(self):
        backend = CooperativeBackend()
        index, coordinator = build(backend)
        call = asyncio.create_task(coordinator.invoke("test:coop", {"duration": 0.05}))
        await backend.started.wait()
        index.register(make_tool("coop", namespace="test", revision=2, backend="coop"))
        result = await call
        assert result.descriptor.revision == 1
        assert backend.seen_descriptor.revision == 1

    async def test_unexpected_exception_mapped(self):
        _, coordinator = build(CrashingBackend())
        with pytest.raises(BackendExecutionError) as exc_info:
            await coordinator.invoke("test:crash")
        assert exc_info.value.details["error_type"] == "KeyError"
        assert "internal detail" not in exc_info.value.message

    async def test_capabilities(self):
        _, coordinator = build(SleepyBackend(), CooperativeBackend())
        assert coordinator.capabilities("test:sleepy")["may_outlive_cancellation"] is True
        assert coordinator.capabilities("test:coop")["may_outlive_cancellation"] is False


# ---------------------------------------------------------------------------
# Cancellation and deadlines
# ---------------------------------------------------------------------------


class TestCancellation:
    async def test_non_cancellable_backend_returns_promptly(self):
        backend = SleepyBackend(duration=2.0)
        _, coordinator = build(backend)
        call = asyncio.create_task(coordinator.invoke("test:sleepy", context=InvocationContext(request_id="r1")))
        await asyncio.sleep(0.01)

        started = time.monotonic()
        assert coordinator.cancel("r1", "user pressed stop")
        with pytest.raises(ToolCallCancelled) as exc_info:
            await call
        assert time.monotonic() - started < 0.5
        assert exc_info.value.backend_may_continue is True
        assert exc_info.value.reason == "user pressed stop"
        assert not backend.finished
        assert coordinator.detached_count == 1
        assert coordinator.in_flight == []
        await coordinator.shutdown()
        assert coordinator.detached_count == 0

    async def test_cooperative_backend_stops(self):
        backend = CooperativeBackend()
        _, coordinator = build(backend, cancel_grace=0.5)
        context = InvocationContext(request_id="r2")
        call = asyncio.create_task(coordinator.invoke("test:coop", context=context))
        await backend.started.wait()
        context.cancel()
        with pytest.raises(ToolCallCancelled) as exc_info:
            await call
        assert exc_info.value.backend_may_continue is False
        assert coordinator.detached_count == 0

    async def test_cancel_is_idempotent(self):
        backend = CooperativeBackend()
        _, coordinator = build(backend)
        call = asyncio.create_task(coordinator.invoke("test:coop", context=InvocationContext(request_id="r3")))
        await backend.started.wait()
        assert coordinator.cancel("r3", "first") is True
        assert coordinator.cancel("r3", "second") is False
        with pytest.raises(ToolCallCancelled) as exc_info:
            await call
        assert exc_info.value.reason == "first"
        assert coordinator.cancel("r3") is False
        assert coordinator.cancel("never-issued") is False

    async def test_already_cancelled_context(self):
        _, coordinator = build(CooperativeBackend())
        context = InvocationContext()
        context.cancel("too late")
        with pytest.raises(ToolCallCancelled):
            await coordinator.invoke("test:coop", context=context)

    async def test_deadline(self):
        _, coordinator = build(CooperativeBackend())
        context = InvocationContext.with_timeout(0.05)
        with pytest.raises(ToolCallTimeout) as exc_info:
            await coordinator.invoke("test:coop", context=context)
        assert context.token.reason == "deadline exceeded"
        assert exc_info.value.details["backend_may_continue"] is False

    async def test_default_timeout(self):
        _, coordinator = build(SleepyBackend(duration=2.0), default_timeout=0.05)
        with pytest.raises(ToolCallTimeout) as exc_info:
            await coordinator.invoke("test:sleepy")
        assert exc_info.value.details["backend_may_continue"] is True
        await coordinator.shutdown()


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


class TestRetry:
    async def test_transient_failure_retried_once(self):
        backend = FlakyBackend(failures=1)
        _, coordinator = build(backend)
        result = await coordinator.invoke("test:flaky")
        assert result.value == "ok"
        assert backend.calls == 2

    async def test_second_failure_unavailable(self):
        backend = FlakyBackend(failures=5)
        _, coordinator = build(backend)
        with pytest.raises(BackendUnavailableError):
            await coordinator.invoke("test:flaky")
        assert backend.calls == 2

    async def test_not_retry_safe_fails_immediately(self):
        backend = FlakyBackend(failures=1, retry_safe=False)
        _, coordinator = build(backend)
        with pytest.raises(BackendExecutionError):
            await coordinator.invoke("test:flaky")
        assert backend.calls == 1


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class TestProgress:
    async def test_events_delivered_in_order_before_result(self):
        _, coordinator = build(ProgressBackend(), progress_queue_size=2)
        received = []

        async def sink(event):
            await asyncio.sleep(0)
            received.append((event.progress, event.total))

        result = await coordinator.invoke("test:progress", context=InvocationContext(progress_sink=sink))
        assert result.value == "finished"
        assert received == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]

    async def test_failing_sink_does_not_fail_call(self):
        _, coordinator = build(ProgressBackend())

        async def sink(event):
            raise RuntimeError("client gone")

        result = await coordinator.invoke("test:progress", context=InvocationContext(progress_sink=sink))
        assert result.value == "finished"

    async def test_unsupported_backend_gets_no_reporter(self):
        backend = SilentBackend()
        _, coordinator = build(backend)

        async def sink(event):
            raise AssertionError("no progress expected")

        await coordinator.invoke("test:silent", context=InvocationContext(progress_sink=sink))
        assert backend.progress_arg is None


# ---------------------------------------------------------------------------
# HTTP backend
# ---------------------------------------------------------------------------


def http_backend(handler, retry_safe: bool = False) -> HttpBackend:
    return HttpBackend("remote", "http://tools.test/", retry_safe=retry_safe, transport=httpx.MockTransport(handler))


class TestHttpBackend:
    async def test_json_result(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"answer": 42})

        _, coordinator = build(http_backend(handler))
        result = await coordinator.invoke("test:remote", {"q": "life"})
        assert result.value == {"answer": 42}
        assert seen["url"] == "http://tools.test/tools/test/remote"
        assert b'"arguments"' in seen["body"]
        await coordinator.shutdown()

    async def test_text_result(self):
        _, coordinator = build(http_backend(lambda request: httpx.Response(200, text="plain")))
        result = await coordinator.invoke("test:remote")
        assert result.value == "plain"
        await coordinator.shutdown()

    async def test_server_error_is_transient(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        _, coordinator = build(http_backend(handler, retry_safe=True))
        with pytest.raises(BackendUnavailableError):
            await coordinator.invoke("test:remote")
        assert len(calls) == 2
        await coordinator.shutdown()

    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, text="no such tool")

        _, coordinator = build(http_backend(handler, retry_safe=True))
        with pytest.raises(BackendExecutionError) as exc_info:
            await coordinator.invoke("test:remote")
        assert exc_info.value.details["status"] == 404
        assert len(calls) == 1
        await coordinator.shutdown()

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        _, coordinator = build(http_backend(handler))
        with pytest.raises(BackendExecutionError):
            await coordinator.invoke("test:remote")
        await coordinator.shutdown()

    async def test_cancellation_aborts_request(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        _, coordinator = build(http_backend(handler), cancel_grace=0.5)
        context = InvocationContext(request_id="h1")
        call = asyncio.create_task(coordinator.invoke("test:remote", context=context))
        await asyncio.sleep(0.02)
        coordinator.cancel("h1")
        with pytest.raises(ToolCallCancelled) as exc_info:
            await call
        assert exc_info.value.backend_may_continue is False
        await coordinator.shutdown()


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------


class TestChain:
    async def test_previous_value_flows_forward(self):
        _, coordinator = build(AddBackend())
        chain = await coordinator.invoke_chain([
            ChainStep("test:add", {"n": 2}),
            ChainStep("test:add", {"n": 3}, use_previous=True),
            ChainStep("test:add", {"n": 10}, use_previous=True),
        ])
        assert chain.error is None
        assert [s.result.value for s in chain.steps] == [2, 5, 15]
        assert chain.final == 15

    async def test_without_use_previous(self):
        _, coordinator = build(AddBackend())
        chain = await coordinator.invoke_chain([
            ChainStep("test:add", {"n": 2}),
            ChainStep("test:add", {"n": 3}),
        ])
        assert chain.final == 3

    async def test_failing_middle_step_stops_chain(self):
        add = AddBackend()
        _, coordinator = build(add, CrashingBackend())
        chain = await coordinator.invoke_chain([
            ChainStep("test:add", {"n": 1}),
            ChainStep("test:crash", use_previous=True),
            ChainStep("test:add", {"n": 1}),
        ])
        assert chain.failed_step == 1
        assert isinstance(chain.error, BackendExecutionError)
        assert len(chain.steps) == 2
        assert chain.steps[1].error is chain.error
        assert chain.final == 1
        assert add.calls == 1

    async def test_unknown_step_tool(self):
        _, coordinator = build(AddBackend())
        chain = await coordinator.invoke_chain([ChainStep("test:missing")])
        assert chain.failed_step == 0
        assert isinstance(chain.error, NotFoundError)
        assert chain.final is None

    async def test_cancellation_between_steps(self):
        add = AddBackend(cancel_after=True)
        _, coordinator = build(add)
        chain = await coordinator.invoke_chain([
            ChainStep("test:add"),
            ChainStep("test:add"),
        ])
        assert add.calls == 1
        assert chain.failed_step == 1
        assert isinstance(chain.error, ToolCallCancelled)
        assert chain.error.reason == "stop after this step"
        assert chain.final == 1

    async def test_cancel_by_request_id_stops_running_step(self):
        _, coordinator = build(CooperativeBackend())
        context = InvocationContext(request_id="chain-1")
        call = asyncio.create_task(coordinator.invoke_chain([
            ChainStep("test:coop", {"duration": 0.01}),
            ChainStep("test:coop", {"duration": 5.0}),
            ChainStep("test:coop", {"duration": 0.01}),
        ], context))
        await asyncio.sleep(0.1)
        assert coordinator.in_flight == ["chain-1"]
        assert coordinator.cancel("chain-1", "user abort")

        chain = await call
        assert chain.failed_step == 1
        assert chain.error.kind == "cancelled"
        assert len(chain.steps) == 2
        assert coordinator.in_flight == []

    async def test_shared_deadline(self):
        _, coordinator = build(CooperativeBackend())
        started = time.monotonic()
        chain = await coordinator.invoke_chain(
            [ChainStep("test:coop", {"duration": 0.1}) for _ in range(5)],
            InvocationContext.with_timeout(0.25),
        )
        assert isinstance(chain.error, ToolCallTimeout)
        assert chain.failed_step >= 1
        assert len(chain.steps) == chain.failed_step + 1
        assert time.monotonic() - started < 1.0

    async def test_empty_chain_rejected(self):
        _, coordinator = build(AddBackend())
        with pytest.raises(ValueError):
            await coordinator.invoke_chain([])
