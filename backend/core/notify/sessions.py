"""Connected protocol sessions and their outbound notification channels."""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

from core.errors import SessionClosedError

from .notifier import NotificationSink

logger = logging.getLogger(__name__)

_CLOSED = object()


def tools_list_changed(revision: int) -> dict:
    """JSON-RPC notification announcing a new tool list revision."""
    return {
        "jsonrpc": "2.0",
        "method": "notifications/tools/list_changed",
        "params": {"_meta": {"revision": revision}},
    }


class Session:
    """One connected client.

    Outbound messages go through a bounded queue drained by the transport
    (for example an SSE stream). A session that stops draining is detected
    by :meth:`send` timing out, never by blocking other sessions.
    """

    def __init__(self, session_id: str | None = None, queue_size: int = 16):
        self.id = session_id or uuid.uuid4().hex
        self.created_at = datetime.now(timezone.utc)
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(queue_size, 1))

    async def send(self, message: dict, timeout: float | None = None) -> None:
        if self.closed:
            raise SessionClosedError(f"Session {self.id} is closed")
        try:
            await asyncio.wait_for(self._queue.put(message), timeout)
        except asyncio.TimeoutError:
            raise SessionClosedError(f"Session {self.id} is not draining its notifications")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def messages(self) -> AsyncIterator[dict]:
        """Yield outbound messages until the session is closed."""
        while True:
            message = await self._queue.get()
            if message is _CLOSED:
                return
            yield message

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class SessionRegistry(NotificationSink):
    """Tracks connected sessions and delivers list-changed notifications."""

    def __init__(self, queue_size: int = 16, send_timeout: float | None = 1.0):
        self._sessions: dict[str, Session] = {}
        self._queue_size = queue_size
        self._send_timeout = send_timeout
        self._connect_hooks: list[Callable[[Session], None]] = []
        self._disconnect_hooks: list[Callable[[str], None]] = []

    def on_connect(self, hook: Callable[[Session], None]) -> None:
        self._connect_hooks.append(hook)

    def on_disconnect(self, hook: Callable[[str], None]) -> None:
        self._disconnect_hooks.append(hook)

    def connect(self, session_id: str | None = None) -> Session:
        session = Session(session_id, queue_size=self._queue_size)
        self._sessions[session.id] = session
        logger.info("Session connected: %s (%d active)", session.id, len(self._sessions))
        for hook in self._connect_hooks:
            hook(session)
        return session

    def disconnect(self, session_id: str) -> bool:
        """Close and forget a session. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info("Session disconnected: %s (%d active)", session_id, len(self._sessions))
        for hook in self._disconnect_hooks:
            hook(session_id)
        return True

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def notify(self, session_id: str, revision: int) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionClosedError(f"Unknown session: {session_id}")
        try:
            await session.send(tools_list_changed(revision), timeout=self._send_timeout)
        except SessionClosedError:
            # Closing the stream makes the client reconnect
            self.disconnect(session_id)
            raise

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.disconnect(session_id)
