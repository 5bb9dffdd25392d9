"""Tool providers: binary resolution, subprocess transport, clients, aggregation."""

from toolmux.providers.aggregator import ToolHost, aggregate
from toolmux.providers.builtin import (
    kthulu_descriptor,
    playwright_descriptor,
    provider_descriptors,
)
from toolmux.providers.client import (
    McpProviderClient,
    ProviderClient,
    ProviderTools,
    RemoteProviderClient,
    collect_tools,
    connect,
    create_client,
)

__all__ = [
    "McpProviderClient",
    "ProviderClient",
    "ProviderTools",
    "RemoteProviderClient",
    "ToolHost",
    "aggregate",
    "collect_tools",
    "connect",
    "create_client",
    "kthulu_descriptor",
    "playwright_descriptor",
    "provider_descriptors",
]
