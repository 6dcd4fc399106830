"""Aggregation endpoints: build a CMS API URL from the registry and proxy it.

  GET /api/search?wd=<term>&source=<site>&customApi=<base>
  GET /api/detail?id=<id>&source=<site>&customApi=<base>

The composed URL goes through ``ForwardingPipeline.forward()`` in-process, so
it meets the same safety policy and retry limit as a direct ``/proxy`` call.
Callers of these endpoints only ever see two shapes: the upstream JSON
document, or the ``{code, msg, error}`` envelope with HTTP 500.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx
from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from vodproxy.aggregation.registry import SiteRegistry
from vodproxy.constants import DETAIL_FAILED_MESSAGE, SEARCH_FAILED_MESSAGE
from vodproxy.proxy.errors import ProxyError, UpstreamStatusFault
from vodproxy.proxy.fetcher import FetchResult, parse_body
from vodproxy.proxy.pipeline import ForwardingPipeline
from vodproxy.utils.logger import clear_request_id, get_logger, new_request_id

logger = get_logger(__name__)

router = APIRouter(tags=["aggregation"])

OPERATION_MESSAGES: dict[str, str] = {
    "search": SEARCH_FAILED_MESSAGE,
    "detail": DETAIL_FAILED_MESSAGE,
}

# Same reserved set as JavaScript's encodeURIComponent.
_URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_component(value: str) -> str:
    return quote(value, safe=_URI_COMPONENT_SAFE)


class AggregationComposer:
    def __init__(self, registry: SiteRegistry, pipeline: ForwardingPipeline) -> None:
        self.registry = registry
        self.pipeline = pipeline

    def build_url(
        self,
        operation: str,
        value: str,
        source: Optional[str] = None,
        custom_api: Optional[str] = None,
    ) -> str:
        """Concatenate base URL, the operation's path template and the encoded value."""
        op = self.registry.operation(operation)
        base = self.registry.resolve_base(source, custom_api)
        return f"{base}{op.path}{encode_component(value)}"

    async def compose(
        self,
        operation: str,
        value: str,
        source: Optional[str] = None,
        custom_api: Optional[str] = None,
    ) -> JSONResponse:
        """Run ``operation`` and return the upstream document or the error envelope."""
        message = OPERATION_MESSAGES[operation]
        url = self.build_url(operation, value, source, custom_api)
        accept = self.registry.operation(operation).header("Accept")

        try:
            result = await self.pipeline.forward(url, accept)
            body = await self._document(result)
        except UpstreamStatusFault as exc:
            await exc.aclose()
            return self._envelope(operation, message, url, exc)
        except (ProxyError, httpx.HTTPError) as exc:
            return self._envelope(operation, message, url, exc)

        return JSONResponse(content=body)

    @staticmethod
    async def _document(result: FetchResult) -> Any:
        if result.stream is None:
            return result.body
        # Registry operations without a JSON Accept header fall into stream
        # mode; the body is small and must be buffered to re-serialise it.
        try:
            content = await result.stream.aread()
        finally:
            await result.stream.aclose()
        return parse_body(content, result.stream)

    @staticmethod
    def _envelope(operation: str, message: str, url: str, exc: Exception) -> JSONResponse:
        error = str(exc) or type(exc).__name__
        logger.warning(
            "aggregation_failed",
            operation=operation,
            url=url,
            error_type=type(exc).__name__,
            error=error,
        )
        return JSONResponse(
            status_code=500,
            content={"code": 500, "msg": message, "error": error},
        )


# ─── Routes ───────────────────────────────────────────────────────────────────


async def _run(
    request: Request,
    operation: str,
    value: str,
    source: Optional[str],
    custom_api: Optional[str],
) -> JSONResponse:
    composer: AggregationComposer = request.app.state.composer
    new_request_id()
    try:
        return await composer.compose(operation, value, source, custom_api)
    finally:
        clear_request_id()


@router.get("/api/search")
async def search(
    request: Request,
    wd: str = "",
    source: Optional[str] = None,
    custom_api: Optional[str] = Query(default=None, alias="customApi"),
) -> JSONResponse:
    return await _run(request, "search", wd, source, custom_api)


@router.get("/api/detail")
async def detail(
    request: Request,
    id: str = "",
    source: Optional[str] = None,
    custom_api: Optional[str] = Query(default=None, alias="customApi"),
) -> JSONResponse:
    return await _run(request, "detail", id, source, custom_api)
