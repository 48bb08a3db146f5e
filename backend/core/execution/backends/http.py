"""Remote execution backend: forwards tool calls to an HTTP service."""

import asyncio
import json
import logging
from typing import Any

import httpx

from core.errors import BackendExecutionError, ToolCallCancelled, TransientBackendError
from core.index import ToolDescriptor

from ..context import CancellationToken, ProgressReporter
from .base import Backend

logger = logging.getLogger(__name__)


class HttpBackend(Backend):
    """POSTs ``{"tool", "arguments"}`` to ``{base_url}/tools/{namespace}/{name}``.

    Connection failures and 5xx responses are transient; 4xx responses are
    execution errors. Cancellation aborts the in-flight request.
    """

    supports_cancellation = True
    supports_progress = False

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        retry_safe: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.name = name
        self.retry_safe = retry_safe
        self._base_url = base_url.rstrip("/")
        headers = dict(headers or {})
        headers.setdefault("Content-Type", "application/json")
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    def url_for(self, descriptor: ToolDescriptor) -> str:
        return f"{self._base_url}/tools/{descriptor.namespace}/{descriptor.name}"

    async def start(
        self,
        descriptor: ToolDescriptor,
        arguments: dict[str, Any],
        token: CancellationToken,
        progress: ProgressReporter | None,
    ) -> Any:
        request = asyncio.ensure_future(
            self._client.post(self.url_for(descriptor), json={"tool": descriptor.tool_id, "arguments": arguments})
        )
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({request, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if not request.done():
            request.cancel()
            try:
                await request
            except (asyncio.CancelledError, httpx.HTTPError):
                pass
            raise ToolCallCancelled(f"Request for {descriptor.tool_id} aborted", reason=token.reason or "")

        try:
            resp = request.result()
        except httpx.TransportError as e:
            raise TransientBackendError(f"{type(e).__name__}: {e}")

        if resp.status_code >= 500:
            raise TransientBackendError(f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise BackendExecutionError(
                f"Tool {descriptor.tool_id} rejected the call",
                {"status": resp.status_code, "body": resp.text[:500]},
            )

        if resp.headers.get("content-type", "").startswith("application/json"):
            try:
                return resp.json()
            except json.JSONDecodeError:
                logger.warning("Invalid JSON from %s; returning text", self.name)
        return resp.text[:5000]

    async def close(self) -> None:
        await self._client.aclose()
