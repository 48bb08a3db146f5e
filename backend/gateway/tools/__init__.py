"""Built-in in-process tools and the local execution backend."""

from core.index import ToolDescriptor

from .base import BaseTool, ToolCall, ToolDefinition, ToolParameter, ToolParamType, ToolResult
from .calculator_tool import CalculatorTool
from .countdown_tool import CountdownTool
from .local_backend import LocalBackend
from .ping_tool import PingTool

BUILTIN_NAMESPACE = "builtin"


def install_builtin_tools(backend: LocalBackend) -> list[ToolDescriptor]:
    """Attach all built-in tools to *backend* and return their descriptors."""
    return [
        backend.add_tool(PingTool(), namespace=BUILTIN_NAMESPACE),
        backend.add_tool(CalculatorTool(), namespace=BUILTIN_NAMESPACE),
        backend.add_tool(CountdownTool(), namespace=BUILTIN_NAMESPACE),
    ]


__all__ = [
    "BUILTIN_NAMESPACE",
    "BaseTool",
    "CalculatorTool",
    "CountdownTool",
    "LocalBackend",
    "PingTool",
    "ToolCall",
    "ToolDefinition",
    "ToolParameter",
    "ToolParamType",
    "ToolResult",
    "install_builtin_tools",
]
