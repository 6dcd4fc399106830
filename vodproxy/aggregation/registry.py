"""Site registry loader for the aggregation endpoints.

The registry is plain YAML data, parsed once at startup into frozen
dataclasses:

.. code-block:: yaml

    default: example            # site used when no/unknown source is given
    operations:
      search:
        path: "/api.php/provide/vod/?ac=videolist&wd="
        headers: {Accept: application/json}
      detail:
        path: "/api.php/provide/vod/?ac=videolist&ids="
        headers: {Accept: application/json}
    sites:
      example:
        api: https://vod.example.com
        name: Example VOD

Unlike the allowlist-style loaders that tolerate bad files, an invalid
registry is fatal: ``load_registry()`` raises ``RegistryError`` and the
lifespan refuses to start.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from vodproxy.utils.logger import get_logger

logger = get_logger(__name__)

REQUIRED_OPERATIONS: frozenset[str] = frozenset({"search", "detail"})


class RegistryError(ValueError):
    """The site registry file is missing, unparseable, or structurally invalid."""


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Site:
    key: str
    api: str
    name: str = ""


@dataclass(frozen=True)
class Operation:
    """Path template appended to a site's base URL, plus request headers."""

    path: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


@dataclass(frozen=True)
class SiteRegistry:
    default: str
    sites: Mapping[str, Site]
    operations: Mapping[str, Operation]

    @property
    def default_site(self) -> Site:
        return self.sites[self.default]

    def site(self, source: Optional[str]) -> Site:
        """Return the named site, or the default site when absent or unknown."""
        if source and source in self.sites:
            return self.sites[source]
        return self.default_site

    def operation(self, name: str) -> Operation:
        try:
            return self.operations[name]
        except KeyError:
            raise ValueError(f"Unknown aggregation operation: {name!r}") from None

    def resolve_base(self, source: Optional[str] = None, custom_api: Optional[str] = None) -> str:
        """Base API URL: ``custom_api`` if given, else the site for ``source``."""
        if custom_api:
            return custom_api
        return self.site(source).api

    @classmethod
    def from_dict(cls, raw: Any) -> "SiteRegistry":
        """Validate a parsed YAML document and build the registry.

        Raises:
            RegistryError: On any structural problem.
        """
        if not isinstance(raw, dict):
            raise RegistryError("registry must be a YAML mapping")

        sites_raw = raw.get("sites")
        if not isinstance(sites_raw, dict) or not sites_raw:
            raise RegistryError("'sites' must be a non-empty mapping")

        sites: dict[str, Site] = {}
        for key, entry in sites_raw.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("api"), str) or not entry["api"]:
                raise RegistryError(f"site '{key}' must define a non-empty 'api' URL")
            sites[str(key)] = Site(key=str(key), api=entry["api"], name=str(entry.get("name", "")))

        default = raw.get("default")
        if default is None:
            default = next(iter(sites))
        if default not in sites:
            raise RegistryError(f"default site '{default}' is not defined in 'sites'")

        operations_raw = raw.get("operations")
        if not isinstance(operations_raw, dict):
            raise RegistryError("'operations' must be a mapping")
        missing = REQUIRED_OPERATIONS - set(operations_raw)
        if missing:
            raise RegistryError(f"missing operations: {sorted(missing)}")

        operations: dict[str, Operation] = {}
        for name, entry in operations_raw.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
                raise RegistryError(f"operation '{name}' must define a 'path' string")
            headers = entry.get("headers") or {}
            if not isinstance(headers, dict):
                raise RegistryError(f"operation '{name}' headers must be a mapping")
            operations[str(name)] = Operation(
                path=entry["path"],
                headers=MappingProxyType({str(k): str(v) for k, v in headers.items()}),
            )

        return cls(
            default=default,
            sites=MappingProxyType(sites),
            operations=MappingProxyType(operations),
        )


# ─── Loading ──────────────────────────────────────────────────────────────────


def load_registry(path: str) -> SiteRegistry:
    """Load the site registry from a YAML file.

    Raises:
        RegistryError: File unreadable, invalid YAML, or invalid structure.
    """
    try:
        with open(path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except OSError as exc:
        raise RegistryError(f"could not read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise RegistryError(f"failed to parse {path}: {exc}") from exc

    registry = SiteRegistry.from_dict(raw)
    logger.info(
        "Site registry loaded",
        path=path,
        sites=len(registry.sites),
        default=registry.default,
    )
    return registry
