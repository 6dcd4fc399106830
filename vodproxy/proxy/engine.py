"""HTTP route for the forwarding core.

  GET /proxy/<url-encoded target URL>

The target arrives percent-decoded in the path. Two repairs are applied before
validation:
  - a reverse proxy that merges slashes turns ``https://host`` into
    ``https:/host``; the scheme's double slash is restored.
  - an unencoded target's own query string lands in the request query; it is
    appended back onto the target.
"""

from __future__ import annotations

import re

from fastapi import APIRouter, Request
from starlette.responses import Response

from vodproxy.proxy.pipeline import ForwardingPipeline
from vodproxy.utils.logger import clear_request_id, new_request_id

router = APIRouter(tags=["proxy"])

_COLLAPSED_SCHEME = re.compile(r"^(https?:)/([^/])", re.IGNORECASE)


def extract_target_url(target: str, query: str = "") -> str:
    """Rebuild the target URL from the captured path and the raw query string."""
    url = _COLLAPSED_SCHEME.sub(r"\1//\2", target, count=1)
    if query:
        url = f"{url}?{query}"
    return url


@router.get("/proxy/{target:path}")
async def proxy_handler(request: Request, target: str) -> Response:
    """Forward a GET to the target URL and relay the result.

    Readiness is enforced by a router-level dependency registered in create_app().
    """
    pipeline: ForwardingPipeline = request.app.state.pipeline
    new_request_id()
    try:
        # request.url is rebuilt from the decoded path, so a "?" inside an
        # encoded target would leak into request.url.query.
        query = request.scope.get("query_string", b"").decode("latin-1")
        url = extract_target_url(target, query)
        return await pipeline.respond(url, request.headers.get("accept"))
    finally:
        clear_request_id()
