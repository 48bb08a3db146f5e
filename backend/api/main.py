"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import settings
from gateway import get_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if "cursor_secret" not in settings.model_fields_set:
        logger.info("CURSOR_SECRET not set; signing cursors with a per-process random key")
    if not settings.notifications_enabled:
        logger.info("Tool list notifications disabled (static deployment mode)")

    runtime = get_runtime()
    logger.info(
        "Runtime ready: %d tools at revision %d (debounce=%dms, max_page_size=%d)",
        len(runtime.index), runtime.index.revision, settings.debounce_window_ms, settings.max_page_size,
    )

    yield

    # Shutdown
    try:
        await get_runtime().close()
    except Exception as e:
        logger.warning("Runtime shutdown failed: %s", e)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Mcp-Session-Id"],
)

from api.routes import mcp, tools

app.include_router(mcp.router, tags=["mcp"])
app.include_router(tools.router, prefix="/api", tags=["tools"])


@app.get("/health")
async def health_check():
    runtime = get_runtime()
    return {
        "status": "ok",
        "app": settings.app_name,
        "version": settings.app_version,
        "revision": runtime.index.revision,
        "tools": len(runtime.index),
        "sessions": len(runtime.sessions),
        "notifications_enabled": settings.notifications_enabled,
    }
