"""MCP (Model Context Protocol) request handling over the coordination core."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from core.errors import SessionClosedError, ToolMeshError
from core.execution import ChainStep, InvocationContext, ProgressEvent
from core.notify import Session
from gateway.runtime import Runtime

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000

_ERROR_CODES = {
    "invalid_cursor": INVALID_PARAMS,
    "stale_cursor": INVALID_PARAMS,
    "not_found": INVALID_PARAMS,
}


@dataclass
class MCPRequest:
    """Incoming MCP request or notification."""
    method: str
    params: dict = field(default_factory=dict)
    id: str | int | None = None

    @property
    def is_notification(self) -> bool:
        return self.id is None and self.method.startswith("notifications/")


@dataclass
class MCPResponse:
    """Outgoing MCP response."""
    result: Any = None
    error: dict | None = None
    id: str | int | None = None

    def to_dict(self) -> dict:
        resp: dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error:
            resp["error"] = self.error
        else:
            resp["result"] = self.result
        return resp


class InvalidParams(ValueError):
    pass


class MCPServer:
    """MCP server for tool discovery and execution.

    Implements:
    - initialize, ping
    - tools/list: paginated listing with opaque cursors
    - tools/call: execution with progress and cancellation
    - tools/run_chain: sequential calls feeding each result to the next
    - notifications/cancelled: cancel an in-flight tools/call
    - tools/search, tools/namespaces, tools/describe: discovery extensions
    """

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self._handlers = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_tools_list,
            "tools/call": self._handle_tools_call,
            "tools/run_chain": self._handle_run_chain,
            "tools/search": self._handle_tools_search,
            "tools/namespaces": self._handle_tools_namespaces,
            "tools/describe": self._handle_tools_describe,
            "notifications/cancelled": self._handle_cancelled,
            "notifications/initialized": self._handle_initialized,
        }

    async def handle_request(self, request: MCPRequest, session: Session | None = None) -> MCPResponse | None:
        """Process one request. Returns None for notifications."""
        handler = self._handlers.get(request.method)
        if not handler:
            if request.is_notification:
                return None
            return MCPResponse(
                error={"code": METHOD_NOT_FOUND, "message": f"Method not found: {request.method}"},
                id=request.id,
            )

        try:
            response = MCPResponse(result=await handler(request, session), id=request.id)
        except InvalidParams as e:
            response = MCPResponse(error={"code": INVALID_PARAMS, "message": str(e)}, id=request.id)
        except ToolMeshError as e:
            response = MCPResponse(
                error={"code": _ERROR_CODES.get(e.kind, SERVER_ERROR), "message": e.message, "data": e.to_dict()},
                id=request.id,
            )
        except Exception as e:
            logger.exception("Unhandled error in %s", request.method)
            response = MCPResponse(
                error={"code": SERVER_ERROR, "message": f"Internal error: {type(e).__name__}"},
                id=request.id,
            )

        if request.is_notification:
            return None
        return response

    async def handle_json(self, json_str: str, session: Session | None = None) -> str | None:
        """Handle a raw JSON-RPC string. Returns the JSON response, or None for notifications."""
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError:
            return json.dumps({
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": PARSE_ERROR, "message": "Parse error"},
            })
        response = await self.handle_message(data, session)
        if response is None:
            return None
        return json.dumps(response, ensure_ascii=False, default=str)

    async def handle_message(self, data: Any, session: Session | None = None) -> dict | None:
        if not isinstance(data, dict) or not isinstance(data.get("method"), str):
            return MCPResponse(
                error={"code": INVALID_REQUEST, "message": "Invalid request"},
                id=data.get("id") if isinstance(data, dict) else None,
            ).to_dict()
        params = data.get("params") or {}
        if not isinstance(params, dict):
            return MCPResponse(
                error={"code": INVALID_PARAMS, "message": "params must be an object"},
                id=data.get("id"),
            ).to_dict()
        request = MCPRequest(method=data["method"], params=params, id=data.get("id"))
        response = await self.handle_request(request, session)
        return response.to_dict() if response else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _handle_initialize(self, request: MCPRequest, session: Session | None) -> dict:
        cfg = self.runtime.settings
        return {
            "protocolVersion": request.params.get("protocolVersion", PROTOCOL_VERSION),
            "capabilities": {"tools": {"listChanged": cfg.notifications_enabled}},
            "serverInfo": {"name": cfg.app_name, "version": cfg.app_version},
        }

    async def _handle_initialized(self, request: MCPRequest, session: Session | None) -> None:
        return None

    async def _handle_ping(self, request: MCPRequest, session: Session | None) -> dict:
        return {}

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _handle_tools_list(self, request: MCPRequest, session: Session | None) -> dict:
        page = self.runtime.paginator.list_tools(
            cursor=_optional_str(request.params, "cursor"),
            page_size=_optional_int(request.params, "limit"),
        )
        result: dict[str, Any] = {"tools": [d.to_schema() for d in page.items]}
        if page.next_cursor:
            result["nextCursor"] = page.next_cursor
        return result

    async def _handle_tools_search(self, request: MCPRequest, session: Session | None) -> dict:
        query = request.params.get("query", "")
        if not isinstance(query, str):
            raise InvalidParams("query must be a string")
        page = self.runtime.paginator.search_tools(
            query,
            cursor=_optional_str(request.params, "cursor"),
            page_size=_optional_int(request.params, "limit"),
        )
        result: dict[str, Any] = {"tools": [d.summary() for d in page.items]}
        if page.next_cursor:
            result["nextCursor"] = page.next_cursor
        return result

    async def _handle_tools_namespaces(self, request: MCPRequest, session: Session | None) -> dict:
        page = self.runtime.paginator.list_namespaces(
            cursor=_optional_str(request.params, "cursor"),
            page_size=_optional_int(request.params, "limit"),
        )
        result: dict[str, Any] = {"namespaces": page.items}
        if page.next_cursor:
            result["nextCursor"] = page.next_cursor
        return result

    async def _handle_tools_describe(self, request: MCPRequest, session: Session | None) -> dict:
        tool_id = request.params.get("tool_id")
        if not isinstance(tool_id, str) or not tool_id:
            raise InvalidParams("tool_id is required")
        descriptor = self.runtime.index.resolve(tool_id)
        return {
            "tool": descriptor.to_schema(),
            "backend": descriptor.backend,
            "capabilities": self.runtime.coordinator.capabilities(descriptor),
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _handle_tools_call(self, request: MCPRequest, session: Session | None) -> dict:
        tool_name = request.params.get("name")
        if not isinstance(tool_name, str) or not tool_name:
            raise InvalidParams("name is required")
        arguments = request.params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise InvalidParams("arguments must be an object")

        context = InvocationContext(request_id=_call_key(session, request.id))
        progress_token = (request.params.get("_meta") or {}).get("progressToken")
        if progress_token is not None and session is not None:
            context.progress_sink = self._progress_sink(session, progress_token)

        try:
            result = await self.runtime.coordinator.invoke(tool_name, arguments, context)
        except ToolMeshError as e:
            error = e.to_dict()
            error["tool_id"] = tool_name
            return {
                "content": [{"type": "text", "text": f"Error: {e.message}"}],
                "structuredContent": {"error": error},
                "isError": True,
            }

        value = result.value
        response = {
            "content": [{"type": "text", "text": json.dumps(value, ensure_ascii=False, default=str)}],
            "isError": False,
            "_meta": {"durationMs": result.duration_ms, "revision": result.descriptor.revision},
        }
        if isinstance(value, dict):
            response["structuredContent"] = value
        return response

    async def _handle_run_chain(self, request: MCPRequest, session: Session | None) -> dict:
        raw_steps = request.params.get("steps")
        if not isinstance(raw_steps, list) or not raw_steps:
            raise InvalidParams("steps must be a non-empty array")
        steps = []
        for i, raw in enumerate(raw_steps):
            if not isinstance(raw, dict) or not isinstance(raw.get("tool_id"), str) or not raw["tool_id"]:
                raise InvalidParams(f"step {i} missing tool_id")
            args = raw.get("args") or {}
            if not isinstance(args, dict):
                raise InvalidParams(f"step {i} args must be an object")
            steps.append(ChainStep(raw["tool_id"], args, bool(raw.get("use_previous", False))))
        include_backends = request.params.get("include_backends", True) is not False
        include_tools = request.params.get("include_tools", False) is True

        context = InvocationContext(request_id=_call_key(session, request.id))
        progress_token = (request.params.get("_meta") or {}).get("progressToken")
        if progress_token is not None and session is not None:
            context.progress_sink = self._progress_sink(session, progress_token)

        chain = await self.runtime.coordinator.invoke_chain(steps, context)

        results = []
        for outcome in chain.steps:
            entry: dict[str, Any] = {"tool_id": outcome.tool_id}
            if outcome.result is not None:
                entry["structured"] = outcome.result.value
                if include_backends:
                    entry["backend"] = outcome.result.backend
                if include_tools:
                    entry["tool"] = outcome.result.descriptor.to_schema()
            if outcome.error is not None:
                entry["error"] = outcome.error.to_dict()
            results.append(entry)

        response: dict[str, Any] = {"results": results, "final": chain.final, "isError": chain.error is not None}
        if chain.error is not None:
            error = chain.error.to_dict()
            error["step_index"] = chain.failed_step
            response["error"] = error
        return response

    async def _handle_cancelled(self, request: MCPRequest, session: Session | None) -> None:
        request_id = request.params.get("requestId")
        if request_id is None:
            return None
        reason = request.params.get("reason") or "cancelled by client"
        if self.runtime.coordinator.cancel(_call_key(session, request_id), reason):
            logger.info("Cancelled request %s: %s", request_id, reason)
        return None

    def _progress_sink(self, session: Session, progress_token: str | int):
        timeout = self.runtime.settings.notification_send_timeout_ms / 1000.0

        async def sink(event: ProgressEvent) -> None:
            params: dict[str, Any] = {"progressToken": progress_token, "progress": event.progress}
            if event.total is not None:
                params["total"] = event.total
            if event.message:
                params["message"] = event.message
            try:
                await session.send(
                    {"jsonrpc": "2.0", "method": "notifications/progress", "params": params},
                    timeout=timeout,
                )
            except SessionClosedError:
                self.runtime.sessions.disconnect(session.id)
                raise

        return sink


def _call_key(session: Session | None, request_id: str | int | None) -> str | None:
    # Request ids are only unique within a session
    if request_id is None:
        return None
    prefix = session.id if session else "-"
    return f"{prefix}:{request_id}"


def _optional_str(params: dict, key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidParams(f"{key} must be a string")
    return value


def _optional_int(params: dict, key: str) -> int | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidParams(f"{key} must be an integer")
    return value
