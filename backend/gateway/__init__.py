"""MCP gateway: protocol handling, runtime wiring and built-in tools."""

from .runtime import Runtime, get_runtime, reset_runtime
from .server import MCPRequest, MCPResponse, MCPServer

__all__ = ["MCPRequest", "MCPResponse", "MCPServer", "Runtime", "get_runtime", "reset_runtime"]
