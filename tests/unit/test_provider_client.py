"""Tests for provider clients and the collect_tools failure boundary."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from mcp.types import (
    EmbeddedResource,
    ImageContent,
    TextContent,
    TextResourceContents,
)

from tests.fixtures.providers import FakeProviderClient
from toolmux.config.schema import BinaryProviderConfig, RemoteProviderConfig
from toolmux.core.errors import (
    BinaryNotFoundError,
    ConfigError,
    HandshakeTimeoutError,
    LaunchFailedError,
    ProviderError,
    TransportClosedError,
    UnsupportedProviderError,
)
from toolmux.providers.client import (
    McpProviderClient,
    ProviderClient,
    RemoteProviderClient,
    collect_tools,
    create_client,
    describe_error,
    render_content,
)


def _missing(name: str) -> Path:
    raise BinaryNotFoundError(name, [Path("/nowhere") / name])


# ── Content rendering ────────────────────────────────────────────


class TestRenderContent:
    def test_text_blocks_are_joined(self) -> None:
        items = [
            TextContent(type="text", text="one"),
            TextContent(type="text", text="two"),
        ]
        assert render_content(items) == "one\ntwo"

    def test_image_placeholder(self) -> None:
        items = [ImageContent(type="image", data="aGk=", mimeType="image/png")]
        assert render_content(items) == "[image: image/png]"

    def test_embedded_text_resource(self) -> None:
        resource = TextResourceContents(uri="file:///a.txt", text="contents")
        items = [EmbeddedResource(type="resource", resource=resource)]
        assert render_content(items) == "contents"

    def test_empty(self) -> None:
        assert render_content([]) == ""


class TestDescribeError:
    def test_provider_error_uses_reason(self) -> None:
        assert describe_error(ProviderError("p", "went away")) == "went away"

    def test_unwraps_exception_groups(self) -> None:
        group = ExceptionGroup("outer", [TransportClosedError("p", "closed output")])
        assert describe_error(group) == "closed output"

    def test_blank_message_uses_type(self) -> None:
        assert describe_error(RuntimeError()) == "RuntimeError"


# ── Factory ──────────────────────────────────────────────────────


class TestCreateClient:
    def test_binary_descriptor(self) -> None:
        client = create_client(BinaryProviderConfig(name="k", binary="kthulu"))
        assert isinstance(client, McpProviderClient)
        assert isinstance(client, ProviderClient)
        assert client.name == "k"

    def test_remote_descriptor(self) -> None:
        client = create_client(RemoteProviderConfig(name="web"))
        assert isinstance(client, RemoteProviderClient)
        assert client.name == "web"


# ── McpProviderClient (no subprocess) ────────────────────────────


class TestMcpProviderClientFailures:
    async def test_binary_not_found(self) -> None:
        client = McpProviderClient(
            BinaryProviderConfig(name="kthulu", binary="kthulu"), resolver=_missing
        )
        with pytest.raises(BinaryNotFoundError):
            await client.connect()
        assert client.transport is None
        await client.close()

    async def test_launch_failure(self, tmp_path: Path) -> None:
        client = McpProviderClient(
            BinaryProviderConfig(name="ghost", command=str(tmp_path / "ghost"))
        )
        with pytest.raises(LaunchFailedError):
            await client.connect()

    async def test_handshake_timeout_terminates(self, python_script) -> None:
        descriptor = python_script(
            "import time; time.sleep(60)", name="silent", startup_timeout=0.5
        )
        client = McpProviderClient(descriptor)
        with pytest.raises(HandshakeTimeoutError) as exc_info:
            await client.connect()
        assert exc_info.value.timeout == 0.5
        transport = client.transport
        assert transport is not None
        assert transport.handle.exited
        assert transport.handle.returncode is not None

        with pytest.raises(TransportClosedError, match="failed or was closed"):
            await client.connect()

    async def test_garbage_handshake_is_unavailable(self, python_script) -> None:
        code = (
            "import sys\n"
            "sys.stdin.readline()\n"
            "print('definitely not json-rpc', flush=True)\n"
        )
        client = McpProviderClient(
            python_script(code, name="garbage", startup_timeout=10.0),
            startup_grace=0.0,
        )
        with pytest.raises(ProviderError) as exc_info:
            await client.connect()
        assert exc_info.value.provider_id == "garbage"
        transport = client.transport
        assert transport is not None
        assert transport.handle.exited

    async def test_descriptor_without_target(self) -> None:
        descriptor = BinaryProviderConfig.model_construct(name="empty")
        client = McpProviderClient(descriptor)
        with pytest.raises(ConfigError, match="neither a command nor a binary"):
            await client.connect()
        assert client.transport is None

    async def test_call_before_connect(self) -> None:
        client = McpProviderClient(BinaryProviderConfig(name="k", binary="kthulu"))
        with pytest.raises(TransportClosedError, match="not connected"):
            await client.call_tool("anything", {})


# ── RemoteProviderClient ─────────────────────────────────────────


class TestRemoteProviderClient:
    async def test_tools(self) -> None:
        client = RemoteProviderClient(RemoteProviderConfig(name="web"))
        tools = await client.tools()
        assert list(tools) == ["search_web"]
        assert tools["search_web"].provider == "web"
        await client.close()

    async def test_unsupported_backend(self) -> None:
        client = RemoteProviderClient(RemoteProviderConfig(name="x", backend="bogus"))
        with pytest.raises(UnsupportedProviderError):
            await client.connect()

    async def test_missing_credentials(self) -> None:
        client = RemoteProviderClient(RemoteProviderConfig(name="b", backend="brave"))
        with pytest.raises(ConfigError):
            await client.connect()


# ── collect_tools ────────────────────────────────────────────────


class TestCollectTools:
    async def test_success(self) -> None:
        client = FakeProviderClient("alpha", ["a", "b"])
        outcome = await collect_tools(client)
        assert outcome.available
        assert outcome.provider == "alpha"
        assert list(outcome.tools) == ["a", "b"]
        assert not client.closed

    async def test_provider_error_is_contained(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        client = FakeProviderClient(
            "kthulu", error=BinaryNotFoundError("kthulu", [Path("/x")])
        )
        outcome = await collect_tools(client)
        assert outcome.tools == {}
        assert not outcome.available
        assert "Binary not found: kthulu" in (outcome.error or "")
        assert client.closed

        records = [
            r
            for r in caplog.records
            if getattr(r, "event", None) == "provider_unavailable"
        ]
        assert len(records) == 1
        assert records[0].provider == "kthulu"  # type: ignore[attr-defined]
        assert "Binary not found" in records[0].reason  # type: ignore[attr-defined]

    async def test_non_provider_error_is_contained(self) -> None:
        client = FakeProviderClient("web", error=UnsupportedProviderError("bogus"))
        outcome = await collect_tools(client)
        assert outcome.error == "Unsupported provider: bogus"

    async def test_unexpected_exception_is_contained(self) -> None:
        client = FakeProviderClient("odd", error=RuntimeError("bug"))
        outcome = await collect_tools(client)
        assert outcome.error == "RuntimeError: bug"

    async def test_remote_unsupported_backend(self) -> None:
        client = RemoteProviderClient(RemoteProviderConfig(name="x", backend="bogus"))
        outcome = await collect_tools(client)
        assert outcome.tools == {}
        assert outcome.error == "Unsupported provider: bogus"

    async def test_cancellation_closes_and_propagates(self) -> None:
        client = FakeProviderClient("slow", ["a"], delay=5.0)
        task = asyncio.create_task(collect_tools(client))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert client.closed
