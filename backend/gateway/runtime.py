"""Wires the index, pagination, notifications and execution together."""

import logging

from config.settings import Settings, settings
from core.execution import ExecutionCoordinator, HttpBackend
from core.index import ChangeEvent, ToolDescriptor, ToolIndex
from core.notify import ChangeNotifier, Session, SessionRegistry
from core.pagination import CursorCodec, Paginator
from gateway.tools import LocalBackend, install_builtin_tools

logger = logging.getLogger(__name__)


class Runtime:
    """One server instance's coordination core."""

    def __init__(self, config: Settings | None = None):
        self.settings = config or settings
        cfg = self.settings

        self.index = ToolIndex(history=cfg.snapshot_history)
        self.codec = CursorCodec(cfg.cursor_secret, cfg.cursor_algorithm)
        self.paginator = Paginator(
            self.index,
            self.codec,
            default_page_size=cfg.default_page_size,
            max_page_size=cfg.max_page_size,
            stale_policy=cfg.stale_cursor_policy,
        )

        self.sessions = SessionRegistry(
            queue_size=cfg.notification_queue_size,
            send_timeout=cfg.notification_send_timeout_ms / 1000.0,
        )
        self.notifier = ChangeNotifier(
            self.sessions,
            debounce_window=cfg.debounce_window_ms / 1000.0,
            enabled=cfg.notifications_enabled,
        )
        self.index.on_change(lambda event: self.notifier.observe(event.revision))
        self.sessions.on_connect(self._subscribe)
        self.sessions.on_disconnect(self.notifier.unsubscribe)

        self.coordinator = ExecutionCoordinator(
            self.index,
            default_timeout=cfg.invocation_default_timeout_s,
            cancel_grace=cfg.cancel_grace_ms / 1000.0,
            progress_queue_size=cfg.progress_queue_size,
        )
        self.local_backend = LocalBackend()
        self.coordinator.register_backend(self.local_backend)
        self.index.on_change(self._release_local_tool)
        for name, base_url in cfg.http_backends.items():
            self.coordinator.register_backend(HttpBackend(
                name,
                base_url,
                timeout=cfg.http_backend_timeout_s,
                retry_safe=cfg.http_backends_retry_safe,
            ))

        if cfg.builtin_tools_enabled:
            for descriptor in install_builtin_tools(self.local_backend):
                self.index.register(descriptor)

    def _subscribe(self, session: Session) -> None:
        self.notifier.subscribe(session.id, last_revision=self.index.revision)

    def _release_local_tool(self, event: ChangeEvent) -> None:
        # A deregistered built-in cannot be revived by re-registering its id
        if event.action == "deregister" and self.local_backend.has_tool(event.tool_id):
            self.local_backend.remove_tool(event.tool_id)
            logger.info("Released local implementation of %s", event.tool_id)

    # Registration API
    def register(self, descriptor: ToolDescriptor) -> int:
        return self.index.register(descriptor)

    def deregister(self, name: str, namespace: str) -> int:
        return self.index.deregister(name, namespace)

    async def close(self) -> None:
        await self.notifier.close()
        self.sessions.close_all()
        await self.coordinator.shutdown()
        logger.info("Runtime closed at index revision %d", self.index.revision)


_runtime: Runtime | None = None


def get_runtime() -> Runtime:
    """Get the process-wide runtime, creating it on first use."""
    global _runtime
    if _runtime is None:
        _runtime = Runtime()
    return _runtime


def reset_runtime() -> None:
    """Drop the process-wide runtime (for testing)."""
    global _runtime
    _runtime = None
