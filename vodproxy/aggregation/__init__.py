"""vodproxy aggregation — registry-driven search and detail endpoints.

Public API:
    SiteRegistry        — immutable site/operation registry
    load_registry       — parse the registry YAML file
    AggregationComposer — builds CMS API URLs and runs them through the proxy
"""
from vodproxy.aggregation.composer import AggregationComposer
from vodproxy.aggregation.registry import RegistryError, SiteRegistry, load_registry

__all__ = ["AggregationComposer", "RegistryError", "SiteRegistry", "load_registry"]
