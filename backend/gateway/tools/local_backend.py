"""In-process execution backend for BaseTool implementations."""

import logging
from typing import Any

from core.errors import BackendExecutionError, BackendUnavailableError, ToolCallCancelled
from core.execution import Backend, CancellationToken, ProgressReporter
from core.index import ToolDescriptor

from .base import BaseTool, ToolCall

logger = logging.getLogger(__name__)


class LocalBackend(Backend):
    """Runs tools inside the server process.

    Tools receive the cancellation token through :class:`ToolCall` and are
    expected to check it between units of work.
    """

    supports_cancellation = True
    supports_progress = True

    def __init__(self, name: str = "local"):
        self.name = name
        self._tools: dict[str, BaseTool] = {}

    def add_tool(self, tool: BaseTool, namespace: str = "builtin", revision: int = 1) -> ToolDescriptor:
        """Attach a tool and return the descriptor to publish in the index."""
        capabilities = {"cancellation"}
        if tool.reports_progress:
            capabilities.add("progress")
        descriptor = tool.get_definition().to_descriptor(
            namespace=namespace,
            backend=self.name,
            revision=revision,
            capabilities=frozenset(capabilities),
        )
        self._tools[descriptor.tool_id] = tool
        return descriptor

    def remove_tool(self, tool_id: str) -> None:
        self._tools.pop(tool_id, None)

    def has_tool(self, tool_id: str) -> bool:
        return tool_id in self._tools

    async def start(
        self,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        token: CancellationToken,
        progress: ProgressReporter | None,
    ) -> Any:
        tool = self._tools.get(descriptor.tool_id)
        if tool is None:
            raise BackendUnavailableError(
                f"No local implementation for {descriptor.tool_id}",
                {"tool_id": descriptor.tool_id, "backend": self.name},
            )

        error = tool.validate(arguments)
        if error:
            raise BackendExecutionError(
                f"Invalid arguments for {descriptor.tool_id}",
                {"tool_id": descriptor.tool_id, "reason": error},
            )

        result = await tool.execute(ToolCall(token=token, progress=progress), **arguments)
        if result.success:
            return result.data
        if token.cancelled:
            raise ToolCallCancelled(f"Call to {descriptor.tool_id} was cancelled", reason=token.reason or "")
        raise BackendExecutionError(
            f"Tool {descriptor.tool_id} failed",
            {"tool_id": descriptor.tool_id, "reason": result.error},
        )
