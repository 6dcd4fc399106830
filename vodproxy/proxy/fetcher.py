"""Upstream fetch with bounded, sequential retry.

The fetcher issues one GET per attempt through the shared ``httpx.AsyncClient``.
Callers run ``is_valid_url()`` on the target first; redirect hops are checked
by the client's request hook (``redirect_guard()``).

Response mode is decided before the first attempt:
  - ``json``   — URL contains the CMS API marker, or the caller accepts JSON.
                 The body is read in full and parsed.
  - ``stream`` — everything else. The response is returned unread so the
                 dispatcher can relay it chunk by chunk.

A failed attempt (transport error, timeout, or non-2xx status) is re-issued
immediately, with no backoff, until ``max_retries`` extra attempts are spent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from vodproxy.config import RetryPolicy, SafetyPolicy
from vodproxy.constants import (
    API_PATH_MARKER,
    JSON_ACCEPT,
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
    STREAM_ACCEPT,
)
from vodproxy.proxy.errors import (
    UpstreamStatusFault,
    UpstreamTransportFault,
    ValidationRejected,
)
from vodproxy.proxy.validator import is_valid_url
from vodproxy.utils.logger import get_logger

logger = get_logger(__name__)

MODE_JSON = "json"
MODE_STREAM = "stream"


# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


RequestHook = Callable[[httpx.Request], Awaitable[None]]


def redirect_guard(safety: SafetyPolicy) -> RequestHook:
    """Request event hook that applies ``is_valid_url()`` to every hop.

    httpx runs request hooks before each request it sends, including the ones
    it builds itself while following redirects, so a permitted origin cannot
    bounce the proxy onto a blocked host.
    """

    async def check(request: httpx.Request) -> None:
        url = str(request.url)
        if not is_valid_url(url, safety):
            logger.info("redirect_rejected", url=url)
            raise ValidationRejected(url)

    return check


def create_http_client(
    policy: RetryPolicy,
    safety: Optional[SafetyPolicy] = None,
) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient.

    Created once at lifespan startup and stored in app.state.http_client.
    Redirects are followed so the client only ever sees the final resource;
    with ``safety`` given, each redirect target is validated first.
    """
    event_hooks: dict[str, list[RequestHook]] = {}
    if safety is not None:
        event_hooks["request"] = [redirect_guard(safety)]
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(policy.timeout),
        follow_redirects=True,
        event_hooks=event_hooks,
    )


# ─── Result ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FetchResult:
    """A successful (2xx) upstream response.

    ``body`` is set in json mode; ``stream`` (an unread, open response) in
    stream mode. Whoever consumes ``stream`` must close it.
    """

    url: str
    status_code: int
    headers: httpx.Headers
    mode: str
    attempts: int
    body: Any = None
    stream: Optional[httpx.Response] = None


def response_mode(url: str, accept: Optional[str]) -> str:
    """Return ``"json"`` or ``"stream"`` for a target URL and inbound Accept header."""
    if API_PATH_MARKER in url:
        return MODE_JSON
    if accept and JSON_ACCEPT in accept:
        return MODE_JSON
    return MODE_STREAM


def parse_body(content: bytes, response: httpx.Response) -> Any:
    """Parse a buffered body as JSON, falling back to text; empty → ``""``."""
    if not content:
        return ""
    try:
        return response.json()
    except ValueError:
        return response.text


# ─── Fetcher ──────────────────────────────────────────────────────────────────


class RetryingFetcher:
    """Issues upstream GETs under a RetryPolicy.

    Stateless across calls: every ``fetch()`` starts its own attempt counter.
    """

    def __init__(self, client: httpx.AsyncClient, policy: RetryPolicy) -> None:
        self._client = client
        self._policy = policy

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def build_headers(self, mode: str, accept: Optional[str]) -> dict[str, str]:
        default_accept = JSON_ACCEPT if mode == MODE_JSON else STREAM_ACCEPT
        return {
            "User-Agent": self._policy.user_agent,
            "Accept": accept or default_accept,
        }

    async def fetch(self, url: str, accept: Optional[str] = None) -> FetchResult:
        """Fetch ``url``, retrying failed attempts.

        Args:
            url:    Target URL, already validated.
            accept: Inbound Accept header, if the caller sent one.

        Returns:
            FetchResult for the first 2xx response.

        Raises:
            UpstreamStatusFault:    the last attempt got a non-2xx response.
            UpstreamTransportFault: the last attempt got no response at all.
            ValidationRejected:     a redirect pointed at a blocked host. Not
                                    retried.
        """
        mode = response_mode(url, accept)
        headers = self.build_headers(mode, accept)
        max_attempts = self._policy.max_retries + 1
        timeout = httpx.Timeout(self._policy.timeout)

        attempt = 0
        while True:
            attempt += 1
            final = attempt >= max_attempts
            try:
                response, body = await self._attempt(url, headers, timeout, mode)
            except httpx.HTTPError as exc:
                if final:
                    logger.warning(
                        "upstream_failed",
                        url=url,
                        attempts=attempt,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    raise UpstreamTransportFault(url, attempt, exc) from exc
                self._log_retry(url, attempt, type(exc).__name__)
                continue

            if response.is_success:
                return FetchResult(
                    url=url,
                    status_code=response.status_code,
                    headers=response.headers,
                    mode=mode,
                    attempts=attempt,
                    body=body,
                    stream=response if mode == MODE_STREAM else None,
                )

            if not final:
                await response.aclose()
                self._log_retry(url, attempt, f"HTTP {response.status_code}")
                continue

            logger.warning(
                "upstream_failed",
                url=url,
                attempts=attempt,
                status_code=response.status_code,
            )
            raise UpstreamStatusFault(
                url,
                attempt,
                response.status_code,
                response.headers,
                body=body,
                stream=response if mode == MODE_STREAM else None,
            )

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _attempt(
        self,
        url: str,
        headers: dict[str, str],
        timeout: httpx.Timeout,
        mode: str,
    ) -> tuple[httpx.Response, Any]:
        """One GET. In json mode the body is read (and the response closed) here,
        so a timeout while reading counts against this attempt."""
        request = self._client.build_request("GET", url, headers=headers, timeout=timeout)
        response = await self._client.send(request, stream=True)
        if mode == MODE_STREAM:
            return response, None
        try:
            content = await response.aread()
        finally:
            await response.aclose()
        return response, parse_body(content, response)

    def _log_retry(self, url: str, attempt: int, reason: str) -> None:
        logger.info(
            "upstream_retry",
            url=url,
            retry=attempt,
            max_retries=self._policy.max_retries,
            reason=reason,
        )
