"""Tool registration and listing endpoints."""

from fastapi import APIRouter, HTTPException, Query

from api.schemas import NamespacePageResponse, ToolPageResponse, ToolRegisterRequest, ToolRegisterResponse
from core.errors import ConflictError, InvalidCursorError, NotFoundError, StaleCursorError
from gateway import get_runtime

router = APIRouter()


@router.post("/tools", status_code=201, response_model=ToolRegisterResponse)
async def register_tool(request: ToolRegisterRequest):
    try:
        descriptor = request.to_descriptor()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        revision = get_runtime().register(descriptor)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=e.to_dict())
    return ToolRegisterResponse(status="registered", tool_id=descriptor.tool_id, revision=revision)


@router.delete("/tools/{namespace}/{name}", response_model=ToolRegisterResponse)
async def deregister_tool(namespace: str, name: str):
    try:
        revision = get_runtime().deregister(name, namespace)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    return ToolRegisterResponse(status="deregistered", tool_id=f"{namespace}:{name}", revision=revision)


@router.get("/tools", response_model=ToolPageResponse)
async def list_tools(cursor: str | None = None, limit: int | None = Query(default=None, ge=1)):
    try:
        page = get_runtime().paginator.list_tools(cursor=cursor, page_size=limit)
    except (InvalidCursorError, StaleCursorError) as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    return ToolPageResponse(
        tools=[d.to_schema() for d in page.items],
        next_cursor=page.next_cursor,
        revision=page.revision,
    )


@router.get("/tools/search", response_model=ToolPageResponse)
async def search_tools(
    q: str = "",
    cursor: str | None = None,
    limit: int | None = Query(default=None, ge=1),
):
    try:
        page = get_runtime().paginator.search_tools(q, cursor=cursor, page_size=limit)
    except (InvalidCursorError, StaleCursorError) as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    return ToolPageResponse(
        tools=[d.summary() for d in page.items],
        next_cursor=page.next_cursor,
        revision=page.revision,
    )


@router.get("/namespaces", response_model=NamespacePageResponse)
async def list_namespaces(cursor: str | None = None, limit: int | None = Query(default=None, ge=1)):
    try:
        page = get_runtime().paginator.list_namespaces(cursor=cursor, page_size=limit)
    except (InvalidCursorError, StaleCursorError) as e:
        raise HTTPException(status_code=400, detail=e.to_dict())
    return NamespacePageResponse(namespaces=page.items, next_cursor=page.next_cursor, revision=page.revision)


@router.get("/tools/{namespace}/{name}")
async def describe_tool(namespace: str, name: str):
    runtime = get_runtime()
    try:
        descriptor = runtime.index.get(namespace, name)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.to_dict())
    return {"tool": descriptor.to_schema(), "backend": descriptor.backend}
