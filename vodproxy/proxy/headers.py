"""HTTP header processing for upstream responses relayed by vodproxy.

  - sanitize_headers(): removes the configured filter list (CSP, cookies,
    frame options, CORS allow-origin) case-insensitively. Relayed verbatim,
    these would let an arbitrary origin override the proxy's own security
    posture or plant cookies on the proxy's domain.

  - build_client_headers(): sanitize_headers() plus removal of hop-by-hop
    headers (RFC 7230 §6.1) and, for re-encoded bodies, entity headers that
    no longer describe the bytes being sent.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Union

import httpx

# ─── Constants ────────────────────────────────────────────────────────────────

# Hop-by-hop headers MUST NOT be forwarded by intermediaries (RFC 7230 §6.1).
# content-length is recomputed by Starlette for whatever body we actually send.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "content-length",
    }
)

# Describe the upstream body bytes; invalid once the body is re-serialised as JSON.
ENTITY_HEADERS: frozenset[str] = frozenset(
    {
        "content-type",
        "content-encoding",
        "content-length",
    }
)

HeaderSource = Union[httpx.Headers, Mapping[str, str], Iterable[tuple[str, str]]]


def _items(headers: HeaderSource) -> Iterable[tuple[str, str]]:
    if isinstance(headers, httpx.Headers):
        return headers.multi_items()
    if isinstance(headers, Mapping):
        return headers.items()
    return headers


# ─── Public API ───────────────────────────────────────────────────────────────


def sanitize_headers(
    headers: HeaderSource,
    filtered: Iterable[str],
) -> dict[str, str]:
    """Return a copy of ``headers`` without any header named in ``filtered``.

    Matching is case-insensitive on both sides. Every other header is returned
    with its original name and value. The input is never modified.

    Repeated headers (possible with ``httpx.Headers``) keep the last value,
    except that none survive if the name is filtered.

    Args:
        headers:  Upstream response headers.
        filtered: Header names to strip, any case.

    Returns:
        ``dict[str, str]`` — the sanitized headers.
    """
    blocked = {name.lower() for name in filtered}
    result: dict[str, str] = {}
    for name, value in _items(headers):
        if name.lower() in blocked:
            continue
        result[name] = value
    return result


def build_client_headers(
    upstream_headers: HeaderSource,
    filtered: Iterable[str],
    reencoded: bool = False,
) -> dict[str, str]:
    """Build the response headers sent to the client.

    Args:
        upstream_headers: Response headers from the upstream origin.
        filtered:         Configured filter list (see ``sanitize_headers``).
        reencoded:        True when the body is re-serialised (JSON mode);
                          drops content-type/-encoding/-length as well.

    Returns:
        ``dict[str, str]`` for a Starlette ``Response(headers=...)``.
    """
    dropped = HOP_BY_HOP_HEADERS | ENTITY_HEADERS if reencoded else HOP_BY_HOP_HEADERS
    return {
        name: value
        for name, value in sanitize_headers(upstream_headers, filtered).items()
        if name.lower() not in dropped
    }
