"""Tests for aggregation: concurrency, merge order, containment, cleanup."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from tests.fixtures.providers import FakeProviderClient
from toolmux.config.schema import RemoteProviderConfig, ToolmuxConfig
from toolmux.core.errors import BinaryNotFoundError, LaunchFailedError
from toolmux.providers.aggregator import ToolHost, aggregate
from toolmux.tools.registry import CollisionPolicy


def _missing(name: str) -> Path:
    raise BinaryNotFoundError(name, [Path("/nowhere") / name])


# ── aggregate ────────────────────────────────────────────────────


class TestAggregate:
    async def test_merges_all_providers(self) -> None:
        clients = [
            FakeProviderClient("alpha", ["a1", "a2"]),
            FakeProviderClient("beta", ["b1"]),
        ]
        registry = await aggregate(clients)
        assert registry.list_names() == ["a1", "a2", "b1"]
        assert registry.unavailable == {}

    async def test_one_failure_yields_remaining_tools(self) -> None:
        clients = [
            FakeProviderClient("alpha", ["a1"]),
            FakeProviderClient(
                "broken", ["x"], error=LaunchFailedError("broken", "no")
            ),
            FakeProviderClient("gamma", ["g1"]),
        ]
        registry = await aggregate(clients)
        assert registry.list_names() == ["a1", "g1"]
        assert set(registry.unavailable) == {"broken"}
        assert clients[1].closed

    async def test_all_unavailable_is_empty_not_error(self) -> None:
        clients = [
            FakeProviderClient("a", error=LaunchFailedError("a", "no")),
            FakeProviderClient("b", error=LaunchFailedError("b", "no")),
        ]
        registry = await aggregate(clients)
        assert len(registry) == 0
        assert set(registry.unavailable) == {"a", "b"}

    async def test_declaration_order_wins_regardless_of_finish_order(self) -> None:
        # "first" finishes last; "second" must still shadow it.
        clients = [
            FakeProviderClient("first", ["search"], delay=0.1),
            FakeProviderClient("second", ["search"]),
        ]
        registry = await aggregate(clients)
        assert registry.get("search").provider == "second"
        assert registry.collisions[0].replaced_provider == "first"

    async def test_prefix_policy(self) -> None:
        clients = [
            FakeProviderClient("alpha", ["search"]),
            FakeProviderClient("beta", ["search"]),
        ]
        registry = await aggregate(clients, policy=CollisionPolicy.PREFIX)
        assert registry.list_names() == ["search", "beta_search"]

    async def test_providers_are_queried_concurrently(self) -> None:
        clients = [FakeProviderClient(f"p{i}", [f"t{i}"], delay=0.3) for i in range(5)]
        start = time.monotonic()
        registry = await aggregate(clients)
        assert len(registry) == 5
        assert time.monotonic() - start < 1.2

    async def test_cancellation_closes_every_client(self) -> None:
        clients = [
            FakeProviderClient("fast", ["f"]),
            FakeProviderClient("slow", ["s"], delay=5.0),
        ]
        task = asyncio.create_task(aggregate(clients))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert all(c.closed for c in clients)

    async def test_successful_clients_stay_open(self) -> None:
        client = FakeProviderClient("alpha", ["a"])
        await aggregate([client])
        assert not client.closed


# ── ToolHost ─────────────────────────────────────────────────────


class TestToolHost:
    async def test_builtin_missing_binary_degrades(self) -> None:
        config = ToolmuxConfig(providers=[RemoteProviderConfig(name="web")])
        async with ToolHost.from_config(config, resolver=_missing) as registry:
            assert registry.list_names() == ["search_web"]
            assert "kthulu" in registry.unavailable

    async def test_registry_before_start_raises(self) -> None:
        host = ToolHost([])
        with pytest.raises(RuntimeError, match="not been started"):
            _ = host.registry

    async def test_close_releases_clients(self) -> None:
        host = ToolHost([RemoteProviderConfig(name="web")])
        registry = await host.start()
        assert len(host.clients) == 1
        assert await host.start() is registry
        await host.close()
        assert host.clients == []
        await host.close()
