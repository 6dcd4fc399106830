"""Failure taxonomy for the forwarding pipeline.

  ValidationRejected      — target URL failed the safety policy; 400, no fetch.
  UpstreamTransportFault  — no upstream response on any attempt; 500.
  UpstreamStatusFault     — upstream answered non-2xx on the last attempt;
                            its status and body are relayed as-is.

Aggregation endpoints never expose these shapes; they normalise every
ProxyError into the ``{code, msg, error}`` envelope.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx


class ProxyError(Exception):
    """Base class for every failure raised by the forwarding pipeline."""


class ValidationRejected(ProxyError):
    def __init__(self, url: str) -> None:
        super().__init__(f"Invalid URL: {url}")
        self.url = url


class UpstreamTransportFault(ProxyError):
    """All attempts failed before any upstream status was obtained."""

    def __init__(self, url: str, attempts: int, cause: Exception) -> None:
        detail = str(cause) or type(cause).__name__
        super().__init__(detail)
        self.url = url
        self.attempts = attempts
        self.cause = cause


class UpstreamStatusFault(ProxyError):
    """The final attempt got a non-2xx response.

    Exactly one of ``body`` / ``stream`` carries the error body: ``body`` in
    JSON mode (already read and parsed, may be empty), ``stream`` in stream
    mode (an open ``httpx.Response`` the dispatcher relays and then closes).
    """

    def __init__(
        self,
        url: str,
        attempts: int,
        status_code: int,
        headers: httpx.Headers,
        body: Any = None,
        stream: Optional[httpx.Response] = None,
    ) -> None:
        super().__init__(f"Request failed with status code {status_code}")
        self.url = url
        self.attempts = attempts
        self.status_code = status_code
        self.headers = headers
        self.body = body
        self.stream = stream

    async def aclose(self) -> None:
        """Release the upstream connection if the error body was never relayed."""
        if self.stream is not None:
            await self.stream.aclose()
