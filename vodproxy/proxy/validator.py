"""Target URL safety validation.

``is_valid_url()`` is the gate every proxied URL passes before any network I/O.
It is a pure, total function: malformed input yields ``False``, never an
exception.

Rules (all must hold):
  - absolute URL with scheme ``http`` or ``https``
  - non-empty hostname
  - hostname not exactly equal to a blocked host
  - hostname not starting with a blocked prefix

Hostnames are compared in canonical form (see ``canonical_host()``): a
trailing dot is dropped and every IPv4 spelling the system resolver accepts
(``127.1``, ``2130706433``, ``0x7f000001``, ``0177.0.0.1``) becomes its
dotted quad, so the deny rules see the address that will actually be dialled.

Prefix matching is a coarse heuristic, not CIDR matching: the default ``172.``
prefix also blocks public 172.x addresses outside 172.16.0.0/12, and 169.254.
(link-local, cloud metadata) is not blocked unless configured. DNS names that
resolve to private addresses are not detected.
"""

from __future__ import annotations

import ipaddress
import socket

import httpx

from vodproxy.config import SafetyPolicy
from vodproxy.constants import ALLOWED_SCHEMES


def canonical_host(host: str) -> str:
    """Return ``host`` as the deny rules should see it.

    ``inet_aton`` parses the same shorthand, decimal, octal and hex IPv4 forms
    the resolver does. IPv6 literals are compressed, and IPv4-mapped IPv6
    addresses collapse to their IPv4 form.
    """
    if host.endswith("."):
        host = host[:-1]

    try:
        v6 = ipaddress.IPv6Address(host)
    except ValueError:
        pass
    else:
        if v6.ipv4_mapped is not None:
            return str(v6.ipv4_mapped)
        return str(v6)

    try:
        packed = socket.inet_aton(host)
    except (OSError, ValueError):
        return host
    return str(ipaddress.IPv4Address(packed))


def is_valid_url(url: str, policy: SafetyPolicy) -> bool:
    """Return True if ``url`` may be fetched under ``policy``.

    Args:
        url:    Untrusted, caller-supplied target URL.
        policy: Blocked hosts and hostname prefixes.

    Returns:
        ``False`` for unparseable or relative URLs, disallowed schemes, blocked
        hostnames and blocked prefixes; ``True`` otherwise.
    """
    if not isinstance(url, str) or not url:
        return False

    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, ValueError, TypeError):
        return False

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return False

    # httpx lower-cases the host and strips IPv6 brackets ("[::1]" → "::1").
    if not parsed.host:
        return False
    hostname = canonical_host(parsed.host)
    if not hostname:
        return False

    if hostname in policy.blocked_hosts:
        return False

    for prefix in policy.blocked_prefixes:
        if hostname.startswith(prefix):
            return False

    return True
