"""Config loading for vodproxy.

Reads `.vodproxy/config.yaml` (or `~/.vodproxy/config.yaml`).
Raises SystemExit on parse errors, a missing `version` field, or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. VODPROXY_CONFIG environment variable (if set)
  3. `.vodproxy/config.yaml` (working directory — for development)
  4. `~/.vodproxy/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file, always win):
  PORT                 — server.port
  REQUEST_TIMEOUT      — upstream.timeout, in MILLISECONDS
  MAX_RETRIES          — upstream.max_retries
  USER_AGENT           — upstream.user_agent
  BLOCKED_HOSTS        — safety.blocked_hosts (comma separated)
  BLOCKED_IP_PREFIXES  — safety.blocked_prefixes (comma separated)
  FILTERED_HEADERS     — headers.filtered (comma separated)

The resulting Config is frozen: it is built once at startup and handed to each
component explicitly.
"""

from __future__ import annotations

import dataclasses
import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import yaml

from vodproxy.constants import (
    DEFAULT_BLOCKED_HOSTS,
    DEFAULT_BLOCKED_PREFIXES,
    DEFAULT_FILTERED_HEADERS,
    DEFAULT_HOST,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_S,
    DEFAULT_USER_AGENT,
)
from vodproxy.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".vodproxy/config.yaml",
    os.path.expanduser("~/.vodproxy/config.yaml"),
]

# Bundled site registry, used when registry.path is not configured.
DEFAULT_REGISTRY_PATH: str = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "data", "sites.yaml"
)


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ServerConfig:
    """Listening address for uvicorn."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass(frozen=True)
class RetryPolicy:
    """Upstream fetch policy.

    timeout:     per-attempt timeout in seconds
    max_retries: extra attempts after the first failure (0 → single attempt)
    user_agent:  synthetic User-Agent sent on every upstream request
    """

    timeout: float = DEFAULT_TIMEOUT_S
    max_retries: int = DEFAULT_MAX_RETRIES
    user_agent: str = DEFAULT_USER_AGENT


@dataclass(frozen=True)
class SafetyPolicy:
    """Hostname deny rules applied to every target URL before it is fetched."""

    blocked_hosts: frozenset[str] = frozenset(DEFAULT_BLOCKED_HOSTS)
    blocked_prefixes: tuple[str, ...] = DEFAULT_BLOCKED_PREFIXES


@dataclass(frozen=True)
class HeaderPolicy:
    """Upstream response headers that never reach the client (lower-cased)."""

    filtered: frozenset[str] = frozenset(DEFAULT_FILTERED_HEADERS)


@dataclass(frozen=True)
class RegistryConfig:
    path: str = DEFAULT_REGISTRY_PATH


@dataclass(frozen=True)
class Config:
    """Root configuration object populated from .vodproxy/config.yaml.

    All fields have safe defaults — vodproxy can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    upstream: RetryPolicy = field(default_factory=RetryPolicy)
    safety: SafetyPolicy = field(default_factory=SafetyPolicy)
    headers: HeaderPolicy = field(default_factory=HeaderPolicy)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    path: Optional[str] = None  # config file this was loaded from

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are ignored.

        Raises:
            SystemExit(1): On a value with the wrong type or out of range.
        """
        server_raw = _section(raw, "server")
        server = ServerConfig(
            host=str(server_raw.get("host", DEFAULT_HOST)),
            port=_int_value(server_raw.get("port", DEFAULT_PORT), "server.port", minimum=1),
        )

        upstream_raw = _section(raw, "upstream")
        upstream = RetryPolicy(
            timeout=_float_value(
                upstream_raw.get("timeout", DEFAULT_TIMEOUT_S), "upstream.timeout"
            ),
            max_retries=_int_value(
                upstream_raw.get("max_retries", DEFAULT_MAX_RETRIES),
                "upstream.max_retries",
                minimum=0,
            ),
            user_agent=str(upstream_raw.get("user_agent", DEFAULT_USER_AGENT)),
        )

        safety_raw = _section(raw, "safety")
        safety = SafetyPolicy(
            blocked_hosts=frozenset(
                _str_list(
                    safety_raw.get("blocked_hosts", list(DEFAULT_BLOCKED_HOSTS)),
                    "safety.blocked_hosts",
                )
            ),
            blocked_prefixes=tuple(
                _str_list(
                    safety_raw.get("blocked_prefixes", list(DEFAULT_BLOCKED_PREFIXES)),
                    "safety.blocked_prefixes",
                )
            ),
        )

        headers_raw = _section(raw, "headers")
        headers = HeaderPolicy(
            filtered=frozenset(
                name.lower()
                for name in _str_list(
                    headers_raw.get("filtered", list(DEFAULT_FILTERED_HEADERS)),
                    "headers.filtered",
                )
            )
        )

        registry_raw = _section(raw, "registry")
        registry_path = registry_raw.get("path")
        if registry_path and path and not os.path.isabs(os.path.expanduser(registry_path)):
            # Relative registry paths are resolved against the config file.
            registry_path = os.path.join(os.path.dirname(path), registry_path)
        registry = RegistryConfig(
            path=os.path.expanduser(registry_path) if registry_path else DEFAULT_REGISTRY_PATH
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            upstream=upstream,
            safety=safety,
            headers=headers,
            registry=registry,
            path=path,
        )


# ─── Value helpers ────────────────────────────────────────────────────────────


def _fail(msg: str) -> NoReturn:
    print(f"CONFIG ERROR: {msg}", file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        _fail(f"'{name}' must be a mapping, got {type(value).__name__}.")
    return value


def _int_value(value: Any, key: str, minimum: int = 0) -> int:
    if isinstance(value, bool):
        _fail(f"{key} must be an integer, got {value!r}.")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        _fail(f"{key} must be an integer, got {value!r}.")
    if parsed < minimum:
        _fail(f"{key} must be >= {minimum}, got {parsed}.")
    return parsed


def _float_value(value: Any, key: str) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        _fail(f"{key} must be a number of seconds, got {value!r}.")
    if parsed <= 0:
        _fail(f"{key} must be positive, got {parsed}.")
    return parsed


def _str_list(value: Any, key: str) -> list[str]:
    if isinstance(value, str):
        return _split_csv(value)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        _fail(f"{key} must be a list of strings.")
    return [v for v in value if v]


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate vodproxy configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, or an invalid value in the file or environment.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("VODPROXY_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        return _apply_env_overrides(Config.defaults())

    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"Failed to parse {found_path}: {exc}\n"
            "vodproxy refuses to start with an invalid config."
        )
    except OSError as exc:
        _fail(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = _apply_env_overrides(Config.from_dict(raw, path=found_path))

    logger.info(
        "Config loaded",
        path=found_path,
        max_retries=config.upstream.max_retries,
        timeout_s=config.upstream.timeout,
    )
    return config


def _apply_env_overrides(config: Config) -> Config:
    """Return a copy of ``config`` with environment variable overrides applied.

    Raises:
        SystemExit(1): If a numeric variable is set but not a valid number.
    """
    env = os.environ

    server = config.server
    if "PORT" in env:
        server = dataclasses.replace(server, port=_int_value(env["PORT"], "PORT", minimum=1))

    upstream = config.upstream
    if "REQUEST_TIMEOUT" in env:
        timeout_ms = _float_value(env["REQUEST_TIMEOUT"], "REQUEST_TIMEOUT")
        upstream = dataclasses.replace(upstream, timeout=timeout_ms / 1000.0)
    if "MAX_RETRIES" in env:
        upstream = dataclasses.replace(
            upstream, max_retries=_int_value(env["MAX_RETRIES"], "MAX_RETRIES", minimum=0)
        )
    if env.get("USER_AGENT"):
        upstream = dataclasses.replace(upstream, user_agent=env["USER_AGENT"])

    safety = config.safety
    if "BLOCKED_HOSTS" in env:
        safety = dataclasses.replace(
            safety, blocked_hosts=frozenset(_split_csv(env["BLOCKED_HOSTS"]))
        )
    if "BLOCKED_IP_PREFIXES" in env:
        safety = dataclasses.replace(
            safety, blocked_prefixes=tuple(_split_csv(env["BLOCKED_IP_PREFIXES"]))
        )

    headers = config.headers
    if "FILTERED_HEADERS" in env:
        headers = dataclasses.replace(
            headers,
            filtered=frozenset(h.lower() for h in _split_csv(env["FILTERED_HEADERS"])),
        )

    return dataclasses.replace(
        config, server=server, upstream=upstream, safety=safety, headers=headers
    )
