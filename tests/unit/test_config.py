"""Unit tests for config loading, validation and environment overrides.

Covers:
  - Missing config file → Config.defaults(), no exception
  - Missing/unsupported version, invalid YAML, non-mapping → SystemExit(1)
  - YAML values merged onto defaults; invalid values → SystemExit(1)
  - Env overrides: PORT, REQUEST_TIMEOUT (milliseconds), MAX_RETRIES,
    USER_AGENT, BLOCKED_HOSTS, BLOCKED_IP_PREFIXES, FILTERED_HEADERS
  - VODPROXY_CONFIG env var
  - Registry path resolution
  - Policies are frozen
"""

from __future__ import annotations

import dataclasses
import os
import textwrap
from typing import Any

import pytest

from vodproxy.config import (
    DEFAULT_REGISTRY_PATH,
    SUPPORTED_VERSIONS,
    Config,
    RetryPolicy,
    SafetyPolicy,
    load_config,
)
from vodproxy.constants import (
    DEFAULT_BLOCKED_PREFIXES,
    DEFAULT_FILTERED_HEADERS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_S,
    DEFAULT_USER_AGENT,
)

MISSING = "/nonexistent/path/config.yaml"


def _write(tmp_path: Any, body: str) -> str:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(textwrap.dedent(body))
    return str(config_file)


# ─── Missing config file ──────────────────────────────────────────────────────


class TestMissingConfigFile:
    def test_nonexistent_path_returns_defaults(self) -> None:
        config = load_config(config_path=MISSING)
        assert isinstance(config, Config)
        assert config.version == 1
        assert config.path is None

    def test_default_values(self) -> None:
        config = load_config(config_path=MISSING)
        assert config.server.port == DEFAULT_PORT
        assert config.upstream.timeout == DEFAULT_TIMEOUT_S
        assert config.upstream.max_retries == DEFAULT_MAX_RETRIES
        assert config.upstream.user_agent == DEFAULT_USER_AGENT
        assert config.safety.blocked_hosts == {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
        assert config.safety.blocked_prefixes == DEFAULT_BLOCKED_PREFIXES
        assert config.headers.filtered == frozenset(DEFAULT_FILTERED_HEADERS)
        assert config.registry.path == DEFAULT_REGISTRY_PATH

    def test_bundled_registry_exists(self) -> None:
        assert os.path.isfile(DEFAULT_REGISTRY_PATH)


# ─── Startup refusal ──────────────────────────────────────────────────────────


class TestInvalidConfigFile:
    def test_missing_version_raises_system_exit(
        self, tmp_path: Any, capsys: pytest.CaptureFixture
    ) -> None:
        path = _write(tmp_path, "upstream:\n  max_retries: 1\n")
        with pytest.raises(SystemExit) as exc_info:
            load_config(config_path=path)
        assert exc_info.value.code == 1
        assert "version" in capsys.readouterr().err

    def test_empty_file_raises_system_exit(self, tmp_path: Any) -> None:
        path = _write(tmp_path, "")
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    @pytest.mark.parametrize("version", [0, 2, 99])
    def test_unsupported_version(
        self, tmp_path: Any, capsys: pytest.CaptureFixture, version: int
    ) -> None:
        path = _write(tmp_path, f"version: {version}\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)
        assert "Unsupported config version" in capsys.readouterr().err

    def test_supported_versions_constant(self) -> None:
        assert SUPPORTED_VERSIONS == frozenset({1})

    def test_invalid_yaml(self, tmp_path: Any, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nupstream: [unclosed\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)
        assert "Failed to parse" in capsys.readouterr().err

    def test_top_level_list(self, tmp_path: Any) -> None:
        path = _write(tmp_path, "- version\n- 1\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    @pytest.mark.parametrize(
        "body",
        [
            "version: 1\nupstream:\n  max_retries: -1\n",
            "version: 1\nupstream:\n  max_retries: many\n",
            "version: 1\nupstream:\n  max_retries: true\n",
            "version: 1\nupstream:\n  timeout: 0\n",
            "version: 1\nserver:\n  port: 0\n",
            "version: 1\nsafety:\n  blocked_hosts: [1, 2]\n",
            "version: 1\nheaders: nope\n",
        ],
    )
    def test_invalid_values(self, tmp_path: Any, body: str) -> None:
        path = _write(tmp_path, body)
        with pytest.raises(SystemExit):
            load_config(config_path=path)


# ─── YAML values ──────────────────────────────────────────────────────────────


class TestYamlValues:
    def test_version_only_gives_defaults(self, tmp_path: Any) -> None:
        path = _write(tmp_path, "version: 1\n")
        config = load_config(config_path=path)
        assert config.upstream == RetryPolicy()
        assert config.safety == SafetyPolicy()
        assert config.path == path

    def test_values_merged(self, tmp_path: Any) -> None:
        path = _write(
            tmp_path,
            """\
            version: 1
            server:
              host: 127.0.0.1
              port: 9000
            upstream:
              timeout: 2.5
              max_retries: 0
              user_agent: test-agent/1.0
            safety:
              blocked_hosts: [metadata.internal]
              blocked_prefixes: ["169.254."]
            headers:
              filtered: [Set-Cookie, Server]
            """,
        )
        config = load_config(config_path=path)
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 9000
        assert config.upstream.timeout == 2.5
        assert config.upstream.max_retries == 0
        assert config.upstream.user_agent == "test-agent/1.0"
        assert config.safety.blocked_hosts == {"metadata.internal"}
        assert config.safety.blocked_prefixes == ("169.254.",)
        assert config.headers.filtered == {"set-cookie", "server"}

    def test_comma_separated_string_list(self, tmp_path: Any) -> None:
        path = _write(tmp_path, 'version: 1\nsafety:\n  blocked_prefixes: "10., 192.168."\n')
        config = load_config(config_path=path)
        assert config.safety.blocked_prefixes == ("10.", "192.168.")

    def test_relative_registry_path_resolved_against_config_dir(self, tmp_path: Any) -> None:
        path = _write(tmp_path, "version: 1\nregistry:\n  path: sites.yaml\n")
        config = load_config(config_path=path)
        assert config.registry.path == os.path.join(str(tmp_path), "sites.yaml")

    def test_absolute_registry_path_kept(self, tmp_path: Any) -> None:
        path = _write(tmp_path, "version: 1\nregistry:\n  path: /etc/vodproxy/sites.yaml\n")
        config = load_config(config_path=path)
        assert config.registry.path == "/etc/vodproxy/sites.yaml"

    def test_vodproxy_config_env_var(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "version: 1\nupstream:\n  max_retries: 4\n")
        monkeypatch.setenv("VODPROXY_CONFIG", path)
        config = load_config()
        assert config.upstream.max_retries == 4
        assert config.path == path


# ─── Environment overrides ────────────────────────────────────────────────────


class TestEnvOverrides:
    def test_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PORT", "3000")
        assert load_config(config_path=MISSING).server.port == 3000

    def test_request_timeout_is_milliseconds(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REQUEST_TIMEOUT", "1500")
        assert load_config(config_path=MISSING).upstream.timeout == 1.5

    def test_max_retries(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_RETRIES", "0")
        assert load_config(config_path=MISSING).upstream.max_retries == 0

    def test_user_agent(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("USER_AGENT", "custom/2.0")
        assert load_config(config_path=MISSING).upstream.user_agent == "custom/2.0"

    def test_blocked_lists(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOCKED_HOSTS", "localhost, metadata.google.internal")
        monkeypatch.setenv("BLOCKED_IP_PREFIXES", "10.,169.254.")
        config = load_config(config_path=MISSING)
        assert config.safety.blocked_hosts == {"localhost", "metadata.google.internal"}
        assert config.safety.blocked_prefixes == ("10.", "169.254.")

    def test_filtered_headers_lowercased(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FILTERED_HEADERS", "Set-Cookie,X-Powered-By")
        config = load_config(config_path=MISSING)
        assert config.headers.filtered == {"set-cookie", "x-powered-by"}

    def test_env_wins_over_file(self, tmp_path: Any, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "version: 1\nupstream:\n  max_retries: 4\n")
        monkeypatch.setenv("MAX_RETRIES", "1")
        assert load_config(config_path=path).upstream.max_retries == 1

    @pytest.mark.parametrize(
        "name,value",
        [("PORT", "http"), ("MAX_RETRIES", "-2"), ("REQUEST_TIMEOUT", "soon")],
    )
    def test_invalid_env_value(self, monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
        monkeypatch.setenv(name, value)
        with pytest.raises(SystemExit):
            load_config(config_path=MISSING)


# ─── Immutability ─────────────────────────────────────────────────────────────


class TestFrozen:
    def test_policies_are_frozen(self) -> None:
        config = Config.defaults()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.upstream.max_retries = 10  # type: ignore[misc]
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.safety = SafetyPolicy()  # type: ignore[misc]
