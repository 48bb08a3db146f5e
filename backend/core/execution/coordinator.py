"""Execution coordinator: dispatch, cancellation, deadlines, progress relay."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from core.errors import (
    BackendExecutionError,
    BackendUnavailableError,
    ToolCallCancelled,
    ToolCallTimeout,
    ToolMeshError,
    TransientBackendError,
)
from core.index import ToolDescriptor, ToolIndex

from .backends.base import Backend
from .context import InvocationContext, ProgressReporter, ProgressSink

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    value: Any
    descriptor: ToolDescriptor
    backend: str
    duration_ms: int = 0


@dataclass
class ChainStep:
    """One step of a sequential chain.

    With ``use_previous`` the prior step's value is passed in as the
    ``previous`` argument.
    """

    tool_id: str
    arguments: dict[str, Any] = field(default_factory=dict)
    use_previous: bool = False


@dataclass
class StepOutcome:
    tool_id: str
    result: InvocationResult | None = None
    error: ToolMeshError | None = None


@dataclass
class ChainResult:
    steps: list[StepOutcome] = field(default_factory=list)
    error: ToolMeshError | None = None
    failed_step: int | None = None

    @property
    def final(self) -> Any:
        """Value of the last step that succeeded."""
        for outcome in reversed(self.steps):
            if outcome.result is not None:
                return outcome.result.value
        return None


class _ProgressRelay:
    """Forwards progress events to the caller's sink in order via a bounded queue."""

    def __init__(self, sink: ProgressSink, maxsize: int):
        self._sink = sink
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(maxsize, 1))
        self.reporter = ProgressReporter(self._queue)
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                await self._sink(event)
            except Exception as e:
                logger.warning("Progress sink failed: %s", e)

    async def drain(self) -> None:
        """Deliver everything already reported, then stop."""
        await self._queue.put(None)
        await self._task
        self.reporter.closed = True

    async def close(self) -> None:
        """Stop immediately, discarding undelivered events."""
        self.reporter.close()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class ExecutionCoordinator:
    """Runs tool invocations against pluggable backends.

    The target descriptor is resolved once, from the snapshot current at
    call time. The coordinator then waits on the backend and on the caller's
    cancellation token concurrently:

    - cancellation (or deadline expiry) returns ``Cancelled`` (``Timeout``)
      promptly. Backends declaring cancellation support get
      ``cancel_grace`` seconds to stop; anything still running afterwards
      is detached and reported through ``backend_may_continue``.
    - backend exceptions are mapped into the error taxonomy.
    - ``TransientBackendError`` is retried once for ``retry_safe`` backends.
    """

    def __init__(
        self,
        index: ToolIndex,
        backends: list[Backend] | None = None,
        default_timeout: float | None = None,
        cancel_grace: float = 0.25,
        progress_queue_size: int = 32,
    ):
        self._index = index
        self._backends: dict[str, Backend] = {}
        self.default_timeout = default_timeout
        self.cancel_grace = cancel_grace
        self.progress_queue_size = progress_queue_size
        self._in_flight: dict[str | int, InvocationContext] = {}
        self._detached: set[asyncio.Task] = set()
        for backend in backends or []:
            self.register_backend(backend)

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    def register_backend(self, backend: Backend) -> None:
        self._backends[backend.name] = backend
        logger.info("Execution backend registered: %s %s", backend.name, backend.capabilities())

    def get_backend(self, name: str) -> Backend | None:
        return self._backends.get(name)

    def capabilities(self, tool_ref: str | ToolDescriptor) -> dict[str, Any]:
        descriptor = self._resolve(tool_ref)
        backend = self._backend_for(descriptor)
        caps = backend.capabilities()
        caps["may_outlive_cancellation"] = not backend.supports_cancellation
        return caps

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> list[str | int]:
        return list(self._in_flight)

    @property
    def detached_count(self) -> int:
        return len(self._detached)

    def cancel(self, request_id: str | int, reason: str = "cancelled by caller") -> bool:
        """Cancel an in-flight call. Unknown or finished ids are a no-op."""
        context = self._in_flight.get(request_id)
        if context is None:
            return False
        return context.token.cancel(reason)

    async def invoke(
        self,
        tool_ref: str | ToolDescriptor,
        arguments: dict[str, Any] | None = None,
        context: InvocationContext | None = None,
    ) -> InvocationResult:
        context = context or InvocationContext()
        descriptor = self._resolve(tool_ref)
        context.descriptor = descriptor
        backend = self._backend_for(descriptor)

        if context.deadline is None and self.default_timeout:
            context.deadline = time.monotonic() + self.default_timeout
        if context.token.cancelled:
            raise ToolCallCancelled(f"Call to {descriptor.tool_id} was cancelled", reason=context.token.reason or "")

        if context.request_id is not None:
            self._in_flight[context.request_id] = context
        started = time.monotonic()
        try:
            value = await self._dispatch(backend, descriptor, dict(arguments or {}), context)
        finally:
            if context.request_id is not None and self._in_flight.get(context.request_id) is context:
                del self._in_flight[context.request_id]

        return InvocationResult(
            value=value,
            descriptor=descriptor,
            backend=backend.name,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def invoke_chain(
        self,
        steps: list[ChainStep],
        context: InvocationContext | None = None,
    ) -> ChainResult:
        """Run steps in order, stopping at the first failure.

        All steps share the chain's cancellation token, deadline and
        progress sink, so cancelling the chain's request id stops whichever
        step is running and skips the rest. Step failures are reported in
        the returned ChainResult, not raised.
        """
        if not steps:
            raise ValueError("chain must have at least one step")
        context = context or InvocationContext()
        if context.deadline is None and self.default_timeout:
            context.deadline = time.monotonic() + self.default_timeout

        if context.request_id is not None:
            self._in_flight[context.request_id] = context
        chain = ChainResult()
        previous: InvocationResult | None = None
        try:
            for i, step in enumerate(steps):
                arguments = dict(step.arguments)
                if step.use_previous and previous is not None:
                    arguments["previous"] = previous.value
                step_context = InvocationContext(
                    token=context.token,
                    progress_sink=context.progress_sink,
                    deadline=context.deadline,
                )
                try:
                    previous = await self.invoke(step.tool_id, arguments, step_context)
                except ToolMeshError as e:
                    logger.info("Chain stopped at step %d (%s): %s", i, step.tool_id, e.kind)
                    chain.steps.append(StepOutcome(step.tool_id, error=e))
                    chain.error = e
                    chain.failed_step = i
                    break
                chain.steps.append(StepOutcome(step.tool_id, result=previous))
        finally:
            if context.request_id is not None and self._in_flight.get(context.request_id) is context:
                del self._in_flight[context.request_id]
        return chain

    def _resolve(self, tool_ref: str | ToolDescriptor) -> ToolDescriptor:
        if isinstance(tool_ref, ToolDescriptor):
            return self._index.get(tool_ref.namespace, tool_ref.name)
        return self._index.resolve(tool_ref)

    def _backend_for(self, descriptor: ToolDescriptor) -> Backend:
        backend = self._backends.get(descriptor.backend)
        if backend is None:
            raise BackendUnavailableError(
                f"No backend available for {descriptor.tool_id}",
                {"tool_id": descriptor.tool_id, "backend": descriptor.backend},
            )
        return backend

    async def _dispatch(
        self,
        backend: Backend,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        context: InvocationContext,
    ) -> Any:
        attempts = 2 if backend.retry_safe else 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._attempt(backend, descriptor, arguments, context)
            except TransientBackendError as e:
                if attempt < attempts and not context.token.cancelled:
                    logger.warning("Retrying %s on %s after transient failure: %s", descriptor.tool_id, backend.name, e)
                    continue
                logger.error("Dispatch of %s to %s failed: %s", descriptor.tool_id, backend.name, e)
                if backend.retry_safe:
                    raise BackendUnavailableError(
                        f"Backend for {descriptor.tool_id} is unavailable",
                        {"tool_id": descriptor.tool_id, "backend": backend.name, "attempts": attempt},
                    ) from None
                raise BackendExecutionError(
                    f"Tool {descriptor.tool_id} failed",
                    {"tool_id": descriptor.tool_id, "backend": backend.name, "detail": str(e)},
                ) from None

    async def _attempt(
        self,
        backend: Backend,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        context: InvocationContext,
    ) -> Any:
        relay = None
        if backend.supports_progress and context.progress_sink is not None:
            relay = _ProgressRelay(context.progress_sink, self.progress_queue_size)

        token = context.token
        task = asyncio.create_task(
            backend.start(descriptor, arguments, token, relay.reporter if relay else None)
        )
        waiter = asyncio.create_task(token.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=context.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            # The caller itself went away; treat it as a cancellation request
            token.cancel("caller cancelled")
            self._detach(task, descriptor)
            if relay:
                await relay.close()
            raise
        finally:
            waiter.cancel()

        if task in done:
            if relay:
                await relay.drain()
            return self._result(task, backend, descriptor, token)

        if not done:
            token.cancel("deadline exceeded")
            timed_out = True
        else:
            timed_out = False
        if relay:
            await relay.close()
        still_running = await self._wind_down(task, backend, descriptor)

        if timed_out:
            raise ToolCallTimeout(
                f"Call to {descriptor.tool_id} exceeded its deadline",
                {"tool_id": descriptor.tool_id, "backend_may_continue": still_running},
            )
        raise ToolCallCancelled(
            f"Call to {descriptor.tool_id} was cancelled",
            reason=token.reason or "",
            backend_may_continue=still_running,
        )

    def _result(self, task: asyncio.Task, backend: Backend, descriptor: ToolDescriptor, token) -> Any:
        try:
            return task.result()
        except TransientBackendError:
            raise
        except ToolMeshError:
            raise
        except asyncio.CancelledError:
            raise ToolCallCancelled(f"Call to {descriptor.tool_id} was cancelled", reason=token.reason or "")
        except Exception as e:
            logger.error("Backend %s raised %s for %s: %s", backend.name, type(e).__name__, descriptor.tool_id, e)
            raise BackendExecutionError(
                f"Tool {descriptor.tool_id} failed",
                {"tool_id": descriptor.tool_id, "backend": backend.name, "error_type": type(e).__name__},
            ) from None

    async def _wind_down(self, task: asyncio.Task, backend: Backend, descriptor: ToolDescriptor) -> bool:
        """Give a cancellation-capable backend a grace period. Returns True if still running."""
        if backend.supports_cancellation and self.cancel_grace > 0:
            done, _ = await asyncio.wait({task}, timeout=self.cancel_grace)
            if task in done:
                _consume(task)
                return False
        self._detach(task, descriptor)
        return True

    def _detach(self, task: asyncio.Task, descriptor: ToolDescriptor) -> None:
        if task.done():
            _consume(task)
            return
        logger.info("Backend for %s keeps running after cancellation; detached", descriptor.tool_id)
        self._detached.add(task)
        task.add_done_callback(self._on_detached_done)

    def _on_detached_done(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        _consume(task)

    async def shutdown(self) -> None:
        for context in list(self._in_flight.values()):
            context.token.cancel("server shutting down")
        tasks = list(self._detached)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for backend in self._backends.values():
            try:
                await backend.close()
            except Exception as e:
                logger.warning("Backend %s close failed: %s", backend.name, e)


def _consume(task: asyncio.Task) -> None:
    # Retrieve the outcome so abandoned failures are not reported as unhandled
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Detached backend task ended with %s", type(exc).__name__)
