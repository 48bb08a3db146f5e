"""Execution backend contract."""

from abc import ABC, abstractmethod
from typing import Any

from core.index import ToolDescriptor

from ..context import CancellationToken, ProgressReporter


class Backend(ABC):
    """Pluggable executor for tool calls.

    Capability flags are self-declared and trusted by the coordinator:

    - ``supports_cancellation``: the backend watches the token and stops
      early when it fires.
    - ``supports_progress``: the backend may call ``progress.report``.
      Backends without it always receive ``progress=None``.
    - ``retry_safe``: a failed dispatch raising TransientBackendError may be
      retried once.
    """

    name: str = "backend"
    supports_cancellation: bool = False
    supports_progress: bool = False
    retry_safe: bool = False

    @abstractmethod
    async def start(
        self,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        token: CancellationToken,
        progress: ProgressReporter | None,
    ) -> Any:
        """Run the tool and return its structured result."""
        ...

    async def close(self) -> None:
        """Release backend resources."""

    def capabilities(self) -> dict[str, bool]:
        return {
            "supports_cancellation": self.supports_cancellation,
            "supports_progress": self.supports_progress,
            "retry_safe": self.retry_safe,
        }
