"""Turns a fetch outcome into exactly one client response.

  FetchResult, json mode    → 200 JSON document (upstream status not kept)
  FetchResult, stream mode  → upstream status, sanitized headers, raw bytes
                              relayed chunk by chunk
  UpstreamStatusFault       → upstream status; error stream relayed, or the
                              buffered body, or a generic message if empty
  ValidationRejected        → 400
  UpstreamTransportFault    → 500 "Request failed: <detail>"

Streams are relayed with ``aiter_raw()``: bytes reach the client exactly as
the origin encoded them, so ``content-encoding`` is passed through untouched.
"""

from __future__ import annotations

from typing import AsyncGenerator, Iterable, Optional

import httpx
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.responses import Response

from vodproxy.constants import INVALID_URL_MESSAGE, PROXY_FAILED_MESSAGE
from vodproxy.proxy.errors import (
    ProxyError,
    UpstreamStatusFault,
    ValidationRejected,
)
from vodproxy.proxy.fetcher import MODE_JSON, FetchResult
from vodproxy.proxy.headers import build_client_headers
from vodproxy.utils.logger import (
    bind_request_id,
    clear_request_id,
    current_request_id,
    get_logger,
)

logger = get_logger(__name__)


async def relay_stream(
    upstream: httpx.Response,
    request_id: Optional[str] = None,
) -> AsyncGenerator[bytes, None]:
    """Yield upstream bytes as they arrive; always close the upstream response.

    If the client disconnects, Starlette stops iterating and the ``finally``
    releases the upstream connection. The body is sent after the route handler
    has returned, so ``request_id`` is re-bound for the relay's own log lines.
    """
    if request_id:
        bind_request_id(request_id)
    relayed = 0
    try:
        async for chunk in upstream.aiter_raw():
            relayed += len(chunk)
            yield chunk
    except httpx.HTTPError as exc:
        # Headers are already sent; all we can do is end the body early.
        logger.warning(
            "stream_relay_aborted",
            url=str(upstream.request.url),
            bytes_relayed=relayed,
            error_type=type(exc).__name__,
        )
    finally:
        await upstream.aclose()
        if request_id:
            clear_request_id()


def dispatch_result(result: FetchResult, filtered: Iterable[str]) -> Response:
    """Build the client response for a successful fetch."""
    if result.mode == MODE_JSON:
        return JSONResponse(
            content=result.body,
            status_code=200,
            headers=build_client_headers(result.headers, filtered, reencoded=True),
        )

    assert result.stream is not None
    return StreamingResponse(
        content=relay_stream(result.stream, current_request_id()),
        status_code=result.status_code,
        headers=build_client_headers(result.headers, filtered),
    )


def dispatch_fault(exc: ProxyError, filtered: Iterable[str]) -> Response:
    """Build the client response for a pipeline failure."""
    if isinstance(exc, ValidationRejected):
        return PlainTextResponse(INVALID_URL_MESSAGE, status_code=400)

    if isinstance(exc, UpstreamStatusFault):
        if exc.stream is not None:
            return StreamingResponse(
                content=relay_stream(exc.stream, current_request_id()),
                status_code=exc.status_code,
                headers=build_client_headers(exc.headers, filtered),
            )
        if exc.body is None or exc.body == "":
            return PlainTextResponse(PROXY_FAILED_MESSAGE, status_code=exc.status_code)
        if isinstance(exc.body, str):
            return Response(
                content=exc.body,
                status_code=exc.status_code,
                media_type=exc.headers.get("content-type", "text/plain; charset=utf-8"),
            )
        return JSONResponse(content=exc.body, status_code=exc.status_code)

    # UpstreamTransportFault: no upstream status was ever obtained.
    return PlainTextResponse(f"Request failed: {exc}", status_code=500)
