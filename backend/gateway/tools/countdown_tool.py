"""Long-running demo tool that reports progress and honors cancellation."""

from gateway.tools.base import (
    BaseTool, ToolCall, ToolDefinition, ToolParameter, ToolParamType, ToolResult,
)

MAX_STEPS = 600


class CountdownTool(BaseTool):

    reports_progress = True

    def get_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="countdown",
            description="Count down for a number of steps, reporting progress after each one.",
            category="diagnostics",
            parameters=[
                ToolParameter(
                    name="steps",
                    type=ToolParamType.INTEGER,
                    description=f"Number of steps (1-{MAX_STEPS})",
                ),
                ToolParameter(
                    name="interval",
                    type=ToolParamType.NUMBER,
                    description="Seconds per step",
                    required=False,
                    default=1.0,
                ),
            ],
        )

    async def execute(self, call: ToolCall, **kwargs) -> ToolResult:
        try:
            steps = int(kwargs.get("steps", 0))
            interval = float(kwargs.get("interval", 1.0))
        except (TypeError, ValueError):
            return ToolResult(success=False, error="steps and interval must be numeric")
        if not 1 <= steps <= MAX_STEPS or interval < 0:
            return ToolResult(success=False, error=f"steps must be 1-{MAX_STEPS} and interval >= 0")

        for done in range(1, steps + 1):
            if await call.sleep(interval):
                return ToolResult(success=False, error="cancelled", metadata={"completed": done - 1})
            await call.report(done, steps, f"{steps - done} remaining")
        return ToolResult(success=True, data={"completed": steps})
