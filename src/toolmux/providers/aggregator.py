"""Aggregator — query all providers concurrently and merge their tools.

:func:`aggregate` is one pass over a set of already-created clients.
:class:`ToolHost` owns the whole lifecycle: it builds clients from
descriptors, aggregates them, and closes every client on exit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from toolmux.providers.builtin import provider_descriptors
from toolmux.providers.client import collect_tools, create_client
from toolmux.tools.registry import CollisionPolicy, ToolRegistry

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from pathlib import Path

    from toolmux.config.schema import ProviderDescriptor, ToolmuxConfig
    from toolmux.providers.client import ProviderClient
    from toolmux.tools.web_search import BackendFactory

logger = logging.getLogger(__name__)


async def close_all(clients: Sequence[ProviderClient]) -> None:
    """Close every client concurrently, logging (not raising) close errors."""
    results = await asyncio.gather(
        *(client.close() for client in clients), return_exceptions=True
    )
    for client, outcome in zip(clients, results, strict=True):
        if isinstance(outcome, Exception):
            logger.warning(
                "Error closing provider %s: %s",
                client.name,
                outcome,
                extra={"event": "provider_close_failed", "provider": client.name},
            )


async def aggregate(
    clients: Sequence[ProviderClient],
    *,
    policy: CollisionPolicy | str = CollisionPolicy.LAST_WRITE_WINS,
) -> ToolRegistry:
    """Connect every client, list its tools, and merge them into one registry.

    Providers are queried concurrently but merged in the order given, so
    with last-write-wins a later provider shadows an earlier one. A
    provider that fails is recorded in ``registry.unavailable`` and
    contributes nothing.

    If the pass is cancelled, every client is closed before the
    cancellation propagates.
    """
    try:
        outcomes = await asyncio.gather(*(collect_tools(c) for c in clients))
    except BaseException:
        await asyncio.shield(close_all(clients))
        raise

    registry = ToolRegistry(policy=policy)
    for outcome in outcomes:
        if outcome.error is not None:
            registry.mark_unavailable(outcome.provider, outcome.error)
            continue
        registry.merge(outcome.tools)

    logger.info(
        "Registered %d tools from %d providers (%d unavailable)",
        len(registry),
        len(clients) - len(registry.unavailable),
        len(registry.unavailable),
    )
    return registry


class ToolHost:
    """Owns the provider clients behind one tool registry.

    Usage::

        async with ToolHost.from_config(config) as registry:
            text = await registry.invoke("search_web", {"query": "mcp"})
    """

    def __init__(
        self,
        descriptors: Sequence[ProviderDescriptor],
        *,
        policy: CollisionPolicy | str = CollisionPolicy.LAST_WRITE_WINS,
        resolver: Callable[[str], Path] | None = None,
        backends: Mapping[str, BackendFactory] | None = None,
    ) -> None:
        self._descriptors = list(descriptors)
        self._policy = CollisionPolicy(policy)
        self._resolver = resolver
        self._backends = backends
        self._clients: list[ProviderClient] = []
        self._registry: ToolRegistry | None = None

    @classmethod
    def from_config(
        cls,
        config: ToolmuxConfig,
        *,
        resolver: Callable[[str], Path] | None = None,
        backends: Mapping[str, BackendFactory] | None = None,
    ) -> ToolHost:
        """Build a host for a configuration, built-in providers included."""
        return cls(
            provider_descriptors(config),
            policy=config.tools.collision_policy,
            resolver=resolver,
            backends=backends,
        )

    @property
    def clients(self) -> list[ProviderClient]:
        return list(self._clients)

    @property
    def registry(self) -> ToolRegistry:
        if self._registry is None:
            msg = "ToolHost has not been started"
            raise RuntimeError(msg)
        return self._registry

    async def start(self) -> ToolRegistry:
        if self._registry is not None:
            return self._registry
        self._clients = [
            create_client(d, resolver=self._resolver, backends=self._backends)
            for d in self._descriptors
        ]
        self._registry = await aggregate(self._clients, policy=self._policy)
        return self._registry

    async def close(self) -> None:
        clients, self._clients = self._clients, []
        self._registry = None
        await close_all(clients)

    async def __aenter__(self) -> ToolRegistry:
        return await self.start()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
