"""Per-call execution context: cancellation scope, deadline and progress."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from core.index import ToolDescriptor


class CancellationToken:
    """Cooperative cancellation signal passed to backends by value.

    Cancelling is idempotent: the first reason wins and later calls are
    no-ops. Backends either poll :attr:`cancelled` or await
    :meth:`wait`.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> bool:
        """Signal cancellation. Returns False if already cancelled."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def wait(self) -> str:
        await self._event.wait()
        return self.reason or ""


@dataclass
class ProgressEvent:
    progress: float
    total: float | None = None
    message: str = ""


ProgressSink = Callable[[ProgressEvent], Awaitable[None]]


class ProgressReporter:
    """Backend-facing handle feeding a bounded relay queue.

    ``report`` waits while the queue is full, so a slow consumer slows the
    producer instead of growing memory. After the call ends the reporter is
    closed and further reports are dropped.
    """

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue
        self.closed = False

    async def report(self, progress: float, total: float | None = None, message: str = "") -> None:
        if self.closed:
            return
        await self._queue.put(ProgressEvent(progress=progress, total=total, message=message))

    def close(self) -> None:
        self.closed = True
        # Release producers blocked on a full queue
        while not self._queue.empty():
            self._queue.get_nowait()


@dataclass
class InvocationContext:
    """Everything owned by one tool call.

    ``descriptor`` is filled in at dispatch time and is not re-resolved
    while the call is in flight.
    """

    token: CancellationToken = field(default_factory=CancellationToken)
    progress_sink: ProgressSink | None = None
    deadline: float | None = None  # time.monotonic() based
    request_id: str | int | None = None
    descriptor: ToolDescriptor | None = None

    @classmethod
    def with_timeout(cls, seconds: float, **kwargs) -> "InvocationContext":
        return cls(deadline=time.monotonic() + seconds, **kwargs)

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def cancel(self, reason: str = "cancelled by caller") -> bool:
        return self.token.cancel(reason)
