"""The forwarding pipeline: validate → fetch → sanitize → dispatch.

``ForwardingPipeline`` is the single entry point for proxying a URL. The
``/proxy`` route calls ``respond()``; the aggregation endpoints call
``forward()`` in-process and shape the outcome themselves, so both paths run
the exact same validation and retry logic.
"""

from __future__ import annotations

from typing import Optional

from starlette.responses import Response

from vodproxy.config import HeaderPolicy, SafetyPolicy
from vodproxy.proxy.dispatcher import dispatch_fault, dispatch_result
from vodproxy.proxy.errors import ProxyError, ValidationRejected
from vodproxy.proxy.fetcher import FetchResult, RetryingFetcher
from vodproxy.proxy.validator import is_valid_url
from vodproxy.utils.logger import get_logger

logger = get_logger(__name__)


class ForwardingPipeline:
    """Holds the immutable policies and the fetcher shared by every request."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        safety: SafetyPolicy,
        headers: HeaderPolicy,
    ) -> None:
        self.fetcher = fetcher
        self.safety = safety
        self.headers = headers

    async def forward(self, url: str, accept: Optional[str] = None) -> FetchResult:
        """Validate and fetch ``url``.

        Raises:
            ValidationRejected: ``url`` fails the safety policy; nothing is fetched.
            UpstreamStatusFault, UpstreamTransportFault: from the fetcher.
        """
        if not is_valid_url(url, self.safety):
            logger.info("proxy_rejected", url=url)
            raise ValidationRejected(url)

        logger.debug("proxy_request", url=url, accept=accept)
        result = await self.fetcher.fetch(url, accept)
        logger.info(
            "proxy_response",
            url=url,
            status_code=result.status_code,
            mode=result.mode,
            attempts=result.attempts,
        )
        return result

    async def respond(self, url: str, accept: Optional[str] = None) -> Response:
        """Run the full pipeline and return the one response for the client."""
        try:
            result = await self.forward(url, accept)
        except ProxyError as exc:
            return dispatch_fault(exc, self.headers.filtered)
        return dispatch_result(result, self.headers.filtered)
