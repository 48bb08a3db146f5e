"""Liveness check tool."""

from gateway.tools.base import (
    BaseTool, ToolCall, ToolDefinition, ToolParameter, ToolParamType, ToolResult,
)


class PingTool(BaseTool):
    """Returns ``pong`` and echoes an optional message."""

    def get_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="ping",
            description="Check that tool execution is working.",
            category="diagnostics",
            parameters=[
                ToolParameter(
                    name="message",
                    type=ToolParamType.STRING,
                    description="Optional text echoed back",
                    required=False,
                ),
            ],
        )

    async def execute(self, call: ToolCall, **kwargs) -> ToolResult:
        data = {"reply": "pong"}
        if kwargs.get("message"):
            data["echo"] = kwargs["message"]
        return ToolResult(success=True, data=data)
