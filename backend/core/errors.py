"""Error taxonomy shared by the index, pagination and execution layers.

Every error carries a stable ``kind`` tag and a human-readable message.
Backend-internal exception types never cross this boundary: they are mapped
to one of the classes below by the execution coordinator.
"""

from typing import Any


class ToolMeshError(Exception):
    """Base class for all caller-visible errors."""

    kind: str = "internal"
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        return data


class ConflictError(ToolMeshError):
    """A descriptor with the same key exists at an equal or higher revision."""

    kind = "conflict"


class NotFoundError(ToolMeshError):
    kind = "not_found"


class InvalidCursorError(ToolMeshError):
    """Malformed cursor or integrity tag mismatch."""

    kind = "invalid_cursor"


class StaleCursorError(ToolMeshError):
    """Cursor position cannot be resolved; restart pagination."""

    kind = "stale_cursor"


class BackendUnavailableError(ToolMeshError):
    kind = "backend_unavailable"
    retryable = True


class ToolCallCancelled(ToolMeshError):
    """The invocation was cancelled by the caller.

    ``backend_may_continue`` is True when the backend does not support
    cancellation and may still be running in the background.
    """

    kind = "cancelled"

    def __init__(self, message: str, reason: str = "", backend_may_continue: bool = False):
        super().__init__(message, {"reason": reason, "backend_may_continue": backend_may_continue})
        self.reason = reason
        self.backend_may_continue = backend_may_continue


class ToolCallTimeout(ToolMeshError):
    kind = "timeout"
    retryable = True


class BackendExecutionError(ToolMeshError):
    """Backend failure; ``details`` holds opaque diagnostic data."""

    kind = "backend_execution"
    retryable = True


class TransientBackendError(Exception):
    """Raised by backends for dispatch failures that may succeed on retry.

    Internal to the backend contract; the coordinator maps it to
    ``BackendUnavailableError`` or ``BackendExecutionError``.
    """


class SessionClosedError(Exception):
    """Notification delivery to a disconnected or unresponsive session."""
