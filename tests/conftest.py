"""Root test configuration for vodproxy.

Strips every environment override the config layer reads, and stops
load_config() from picking up a developer's real .vodproxy/config.yaml, so
each test sees exactly the config it builds.
"""

import pytest

_ENV_OVERRIDES = (
    "VODPROXY_CONFIG",
    "PORT",
    "REQUEST_TIMEOUT",
    "MAX_RETRIES",
    "USER_AGENT",
    "BLOCKED_HOSTS",
    "BLOCKED_IP_PREFIXES",
    "FILTERED_HEADERS",
)


@pytest.fixture(autouse=True)
def isolated_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear config env vars and the default config search paths for all tests."""
    for name in _ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("vodproxy.config.DEFAULT_CONFIG_PATHS", [])
