"""Shared constants for vodproxy.

Every default consumed by the config layer and the proxy pipeline lives here.
No magic numbers in other modules — import from here.
"""

# ─── Server ───────────────────────────────────────────────────────────────────

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8080

# ─── Upstream fetch ───────────────────────────────────────────────────────────

# Per-attempt timeout in seconds. REQUEST_TIMEOUT (env) is given in milliseconds.
DEFAULT_TIMEOUT_S: float = 5.0

# Additional attempts after the first one fails. 2 → at most 3 attempts.
DEFAULT_MAX_RETRIES: int = 2

DEFAULT_USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

# A target URL containing this marker is a video-site CMS API → JSON mode.
API_PATH_MARKER: str = "/api.php/provide/vod"

JSON_ACCEPT: str = "application/json"
STREAM_ACCEPT: str = "*/*"

# Shared client pool. Not a throttle: requests beyond the pool wait for a slot.
POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 20
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds

# ─── Safety policy ────────────────────────────────────────────────────────────

ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

DEFAULT_BLOCKED_HOSTS: tuple[str, ...] = ("localhost", "127.0.0.1", "0.0.0.0", "::1")

# Prefix match only. "172." is broader than 172.16.0.0/12 and 169.254.
# link-local is not covered.
DEFAULT_BLOCKED_PREFIXES: tuple[str, ...] = ("192.168.", "10.", "172.")

# ─── Response headers ─────────────────────────────────────────────────────────

DEFAULT_FILTERED_HEADERS: tuple[str, ...] = (
    "content-security-policy",
    "cookie",
    "set-cookie",
    "x-frame-options",
    "access-control-allow-origin",
)

# ─── Client-facing messages ───────────────────────────────────────────────────

INVALID_URL_MESSAGE: str = "Invalid URL"
PROXY_FAILED_MESSAGE: str = "Proxy request failed"
SEARCH_FAILED_MESSAGE: str = "API aggregation failed"
DETAIL_FAILED_MESSAGE: str = "Detail API failed"
