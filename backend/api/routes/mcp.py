"""MCP transport endpoints: JSON-RPC over POST, notifications over SSE."""

import json
import logging

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from core.notify import Session
from gateway import MCPServer, get_runtime
from gateway.server import PARSE_ERROR

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_HEADER = "Mcp-Session-Id"

_server: MCPServer | None = None


def _get_server() -> MCPServer:
    global _server
    runtime = get_runtime()
    if _server is None or _server.runtime is not runtime:
        _server = MCPServer(runtime)
    return _server


def _require_session(session_id: str | None):
    if not session_id:
        raise HTTPException(status_code=400, detail=f"Missing {SESSION_HEADER} header")
    session = get_runtime().sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    return session


@router.post("/mcp")
async def post_message(
    request: Request,
    mcp_session_id: str | None = Header(default=None, alias=SESSION_HEADER),
):
    try:
        data = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.debug("Rejected unparseable MCP message")
        return JSONResponse(
            {"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error"}},
        )

    server = _get_server()
    runtime = server.runtime

    if isinstance(data, dict) and data.get("method") == "initialize":
        session = runtime.sessions.connect()
        response = await server.handle_message(data, session)
        return JSONResponse(response, headers={SESSION_HEADER: session.id})

    session = _require_session(mcp_session_id)
    response = await server.handle_message(data, session)
    if response is None:
        return Response(status_code=202)
    return JSONResponse(response)


@router.get("/mcp")
async def stream_notifications(
    mcp_session_id: str | None = Header(default=None, alias=SESSION_HEADER),
):
    session = _require_session(mcp_session_id)
    return EventSourceResponse(_event_stream(session))


async def _event_stream(session: Session):
    try:
        async for message in session.messages():
            yield {"event": "message", "data": json.dumps(message, ensure_ascii=False)}
    finally:
        # The subscription lives as long as the stream
        get_runtime().sessions.disconnect(session.id)


@router.delete("/mcp")
async def close_session(
    mcp_session_id: str | None = Header(default=None, alias=SESSION_HEADER),
):
    session = _require_session(mcp_session_id)
    get_runtime().sessions.disconnect(session.id)
    return {"status": "closed", "session_id": session.id}
