"""End-to-end tests against a real MCP server subprocess.

The echo server (``tests/fixtures/echo_server.py``) is launched with the
running interpreter, so these tests need no external binaries.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import pytest

from toolmux.config.schema import RemoteProviderConfig
from toolmux.core.errors import ProviderError, ProviderTimeoutError
from toolmux.providers.aggregator import ToolHost, aggregate
from toolmux.providers.client import McpProviderClient, connect, create_client
from toolmux.providers.transport import ProcessTransport
from toolmux.tools.base import Failure, Result, ToolCall

pytestmark = pytest.mark.slow


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


# ── Client ───────────────────────────────────────────────────────


class TestMcpProviderClient:
    async def test_handshake_and_catalogue(self, echo_descriptor: Any) -> None:
        async with McpProviderClient(echo_descriptor()) as client:
            assert client.connected
            assert client.server_info is not None
            assert client.server_info.name == "echo-server"
            tools = await client.tools()
            assert set(tools) == {"echo", "fail", "sleep"}
            echo = tools["echo"]
            assert echo.provider == "echo"
            assert echo.parameters_schema["required"] == ["text"]
        assert not client.connected
        transport = client.transport
        assert transport is not None
        assert transport.handle.exited

    async def test_concurrent_connects_spawn_one_process(
        self, echo_descriptor: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        launch = ProcessTransport.launch
        spawned: list[int] = []

        async def recording_launch(*args: Any, **kwargs: Any) -> ProcessTransport:
            transport = await launch(*args, **kwargs)
            spawned.append(transport.handle.pid)
            return transport

        monkeypatch.setattr(ProcessTransport, "launch", recording_launch)
        client = McpProviderClient(echo_descriptor())
        try:
            first, second = await asyncio.gather(client.tools(), client.tools())
            assert set(first) == set(second) == {"echo", "fail", "sleep"}
            assert len(spawned) == 1
            assert client.transport is not None
            assert client.transport.handle.pid == spawned[0]
        finally:
            await client.close()
        assert not _alive(spawned[0])

    async def test_call_echo(self, echo_descriptor: Any) -> None:
        async with McpProviderClient(echo_descriptor()) as client:
            tools = await client.tools()
            events = [e async for e in tools["echo"].stream({"text": "hello"})]
        assert events == [Result("hello")]

    async def test_error_result_becomes_failure(self, echo_descriptor: Any) -> None:
        async with McpProviderClient(echo_descriptor()) as client:
            tools = await client.tools()
            events = [e async for e in tools["fail"].stream({})]
            assert len(events) == 1
            failure = events[0]
            assert isinstance(failure, Failure)
            assert isinstance(failure.error, ProviderError)
            assert "intentional failure" in str(failure.error)

            # The provider stays usable after a failed call.
            again = [e async for e in tools["echo"].stream({"text": "still here"})]
            assert again == [Result("still here")]

    async def test_call_timeout(self, echo_descriptor: Any) -> None:
        async with McpProviderClient(echo_descriptor(call_timeout=0.3)) as client:
            tools = await client.tools()
            events = [e async for e in tools["sleep"].stream({"seconds": 5})]
            failure = events[-1]
            assert isinstance(failure, Failure)
            assert isinstance(failure.error, ProviderTimeoutError)

    async def test_provider_death_fails_next_call(self, echo_descriptor: Any) -> None:
        async with McpProviderClient(echo_descriptor()) as client:
            tools = await client.tools()
            transport = client.transport
            assert transport is not None
            transport.handle.process.kill()
            await transport.handle.process.wait()

            events = [e async for e in tools["echo"].stream({"text": "anyone?"})]
            failure = events[-1]
            assert isinstance(failure, Failure)
            assert isinstance(failure.error, ProviderError)

    async def test_connect_helper(self, echo_descriptor: Any) -> None:
        client = await connect(echo_descriptor())
        try:
            assert "echo" in await client.tools()
        finally:
            await client.close()
        await client.close()

    async def test_concurrent_calls_share_one_session(
        self, echo_descriptor: Any
    ) -> None:
        async with McpProviderClient(echo_descriptor()) as client:
            tools = await client.tools()
            echo = tools["echo"]

            async def call(text: str) -> str:
                events = [e async for e in echo.stream({"text": text})]
                result = events[-1]
                assert isinstance(result, Result)
                return result.content

            replies = await asyncio.gather(*(call(f"msg-{i}") for i in range(5)))
        assert replies == [f"msg-{i}" for i in range(5)]


# ── Aggregation ──────────────────────────────────────────────────


class TestAggregationWithSubprocesses:
    async def test_mixed_providers(self, echo_descriptor: Any, tmp_path: Any) -> None:
        descriptors = [
            echo_descriptor(),
            RemoteProviderConfig(name="web"),
            echo_descriptor(name="ghost", command=str(tmp_path / "missing")),
        ]
        async with ToolHost(descriptors) as registry:
            assert set(registry.list_names()) == {"echo", "fail", "sleep", "search_web"}
            assert set(registry.unavailable) == {"ghost"}

            result = await registry.execute(
                ToolCall(id="1", name="echo", arguments={"text": "hi"})
            )
            assert result.content == "hi"
            assert result.is_error is False

            failed = await registry.execute(ToolCall(id="2", name="fail"))
            assert failed.is_error is True

    async def test_same_server_twice_collides(self, echo_descriptor: Any) -> None:
        descriptors = [echo_descriptor(name="one"), echo_descriptor(name="two")]
        async with ToolHost(descriptors, policy="prefix") as registry:
            assert registry.get("echo").provider == "one"
            assert registry.get("two_echo").provider == "two"
            assert await registry.invoke("two_echo", {"text": "x"}) == "x"

    async def test_host_close_reaps_processes(self, echo_descriptor: Any) -> None:
        host = ToolHost([echo_descriptor(name="a"), echo_descriptor(name="b")])
        await host.start()
        pids = [
            c.transport.handle.pid
            for c in host.clients
            if isinstance(c, McpProviderClient) and c.transport is not None
        ]
        assert len(pids) == 2
        await host.close()
        assert not any(_alive(pid) for pid in pids)

    async def test_cancelled_pass_leaves_no_processes(
        self, echo_descriptor: Any, python_script: Any
    ) -> None:
        clients = [
            create_client(echo_descriptor(name="quick")),
            # Never answers the handshake.
            create_client(
                python_script("import time; time.sleep(60)", name="stuck")
            ),
        ]
        task = asyncio.create_task(aggregate(clients))
        await asyncio.sleep(3.0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        for client in clients:
            assert isinstance(client, McpProviderClient)
            transport = client.transport
            assert transport is not None
            assert transport.handle.exited
            assert not _alive(transport.handle.pid)
