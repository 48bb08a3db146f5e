"""Live tool index: copy-on-write registry of tool descriptors."""

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable

from core.errors import ConflictError, NotFoundError

from .descriptor import IndexSnapshot, ToolDescriptor, parse_tool_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """Emitted to observers after every committed mutation."""

    action: str  # "register" or "deregister"
    tool_id: str
    revision: int


ChangeHook = Callable[[ChangeEvent], None]


class ToolIndex:
    """Authoritative set of tool descriptors.

    Readers call :meth:`snapshot`, which returns the current immutable
    :class:`IndexSnapshot` without locking. Writers are serialized by a short
    lock that only builds the next snapshot and swaps the reference, so a
    reader never sees torn state and never waits on a writer.
    """

    def __init__(self, history: int = 64, instance_id: str | None = None):
        # Distinguishes this index from any other sharing a cursor secret
        self.instance_id = instance_id or uuid.uuid4().hex
        self._write_lock = threading.Lock()
        self._current = IndexSnapshot.empty()
        self._history: deque[IndexSnapshot] = deque([self._current], maxlen=max(history, 1))
        self._hooks: list[ChangeHook] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> IndexSnapshot:
        return self._current

    @property
    def revision(self) -> int:
        return self._current.revision

    def __len__(self) -> int:
        return len(self._current)

    def snapshot_at(self, revision: int) -> IndexSnapshot | None:
        """Return a retained past snapshot, or None once it has been evicted."""
        for snap in reversed(self._history):
            if snap.revision == revision:
                return snap
            if snap.revision < revision:
                break
        return None

    def get(self, namespace: str, name: str) -> ToolDescriptor:
        descriptor = self._current.get(namespace, name)
        if descriptor is None:
            raise NotFoundError(f"Tool not found: {namespace}:{name}")
        return descriptor

    def resolve(self, tool_id: str) -> ToolDescriptor:
        return self.get(*parse_tool_id(tool_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register(self, descriptor: ToolDescriptor) -> int:
        """Install a descriptor and return the new index revision.

        Raises ConflictError when the same key is already published at an
        equal or higher descriptor revision.
        """
        with self._write_lock:
            current = self._current
            existing = current.get(*descriptor.key)
            if existing is not None and existing.revision >= descriptor.revision:
                raise ConflictError(
                    f"Tool {descriptor.tool_id} already registered at revision {existing.revision}",
                    {"tool_id": descriptor.tool_id, "existing_revision": existing.revision},
                )
            snap = current.with_descriptor(descriptor, current.revision + 1)
            self._commit(snap)

        logger.info(
            "Registered %s (rev %d) -> index revision %d",
            descriptor.tool_id, descriptor.revision, snap.revision,
        )
        self._emit(ChangeEvent("register", descriptor.tool_id, snap.revision))
        return snap.revision

    def deregister(self, name: str, namespace: str) -> int:
        """Remove a descriptor and return the new index revision."""
        key = (namespace, name)
        with self._write_lock:
            current = self._current
            if current.get(*key) is None:
                raise NotFoundError(f"Tool not found: {namespace}:{name}")
            snap = current.without(key, current.revision + 1)
            self._commit(snap)

        logger.info("Deregistered %s:%s -> index revision %d", namespace, name, snap.revision)
        self._emit(ChangeEvent("deregister", f"{namespace}:{name}", snap.revision))
        return snap.revision

    def _commit(self, snap: IndexSnapshot) -> None:
        # Caller holds the write lock
        self._history.append(snap)
        self._current = snap

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def on_change(self, hook: ChangeHook) -> Callable[[], None]:
        """Register a mutation observer. Returns an unsubscribe callable."""
        self._hooks.append(hook)

        def unsubscribe() -> None:
            if hook in self._hooks:
                self._hooks.remove(hook)

        return unsubscribe

    def _emit(self, event: ChangeEvent) -> None:
        for hook in list(self._hooks):
            try:
                hook(event)
            except Exception as e:
                # A failing observer must never fail the mutation
                logger.error("Change hook failed for %s: %s", event.tool_id, e)
