"""Provider clients — turn a provider descriptor into a tool map.

:class:`McpProviderClient` launches a subprocess and speaks MCP with it;
:class:`RemoteProviderClient` wraps a web search backend. Both satisfy
the :class:`ProviderClient` protocol.

:func:`collect_tools` is the failure boundary: any connection or
handshake error is downgraded to an empty tool set and a structured
warning so one broken provider never blocks the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import anyio
from mcp import ClientSession
from mcp.shared.exceptions import McpError
from mcp.shared.message import SessionMessage
from mcp.types import Implementation

from toolmux import __version__
from toolmux.config.schema import BinaryProviderConfig, RemoteProviderConfig
from toolmux.core.errors import (
    ConfigError,
    HandshakeTimeoutError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ToolmuxError,
    TransportClosedError,
    TransportProtocolError,
)
from toolmux.providers.binary import require_binary
from toolmux.providers.transport import DEFAULT_STARTUP_GRACE, ProcessTransport
from toolmux.tools.base import Failure, Result, ToolDescriptor
from toolmux.tools.web_search import web_search_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Mapping, Sequence
    from pathlib import Path

    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
    from mcp.types import CallToolResult
    from mcp.types import Tool as McpTool

    from toolmux.config.schema import ProviderDescriptor
    from toolmux.tools.base import ToolEvent
    from toolmux.tools.web_search import BackendFactory

logger = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="toolmux", version=__version__)
SESSION_CLOSE_GRACE = 5.0


@runtime_checkable
class ProviderClient(Protocol):
    """Protocol that all provider clients must satisfy."""

    @property
    def name(self) -> str:
        """Provider name from its descriptor."""
        ...

    async def connect(self) -> None:
        """Bring the provider up (spawn + handshake for subprocesses).

        Raises:
            ToolmuxError: Typically a ProviderUnavailableError subclass.
        """
        ...

    async def tools(self) -> dict[str, ToolDescriptor]:
        """Return the provider's tools keyed by name."""
        ...

    async def close(self) -> None:
        """Release the provider. Must be safe to call more than once."""
        ...


def _root_cause(exc: BaseException) -> BaseException:
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


def describe_error(exc: BaseException) -> str:
    """One-line reason for a provider failure, unwrapping exception groups."""
    cause = _root_cause(exc)
    if isinstance(cause, ProviderError):
        return cause.reason
    return str(cause) or type(cause).__name__


def render_content(items: Sequence[Any]) -> str:
    """Flatten MCP content blocks into text."""
    parts: list[str] = []
    for item in items:
        kind = getattr(item, "type", "")
        if kind == "text":
            parts.append(item.text)
        elif kind in ("image", "audio"):
            parts.append(f"[{kind}: {getattr(item, 'mimeType', 'unknown')}]")
        elif kind == "resource":
            resource = item.resource
            text = getattr(resource, "text", None)
            parts.append(text if text is not None else f"[resource: {resource.uri}]")
        elif kind == "resource_link":
            parts.append(f"[resource: {item.uri}]")
        else:
            parts.append(str(item))
    return "\n".join(parts)


class McpProviderClient:
    """MCP client for one subprocess provider.

    The MCP session lives in a single supervisor task for the client's
    whole lifetime; tool calls from any task are forwarded to it. Closing
    the client (or the session dying) terminates the subprocess.
    """

    def __init__(
        self,
        descriptor: BinaryProviderConfig,
        *,
        resolver: Callable[[str], Path] = require_binary,
        startup_grace: float = DEFAULT_STARTUP_GRACE,
    ) -> None:
        self._descriptor = descriptor
        self._resolver = resolver
        self._startup_grace = startup_grace
        self._transport: ProcessTransport | None = None
        self._session: ClientSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[list[McpTool]] | None = None
        self._closing = asyncio.Event()
        self._connect_lock = asyncio.Lock()
        self._tools: dict[str, ToolDescriptor] | None = None
        self.server_info: Implementation | None = None

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def descriptor(self) -> BinaryProviderConfig:
        return self._descriptor

    @property
    def transport(self) -> ProcessTransport | None:
        return self._transport

    @property
    def connected(self) -> bool:
        task = self._task
        return self._session is not None and task is not None and not task.done()

    def _executable(self) -> str:
        d = self._descriptor
        if d.binary is not None:
            return str(self._resolver(d.binary))
        if d.command is None:
            msg = f"provider {d.name!r} has neither a command nor a binary"
            raise ConfigError(msg)
        return d.command

    # ── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> None:
        """Spawn the provider, run the handshake, and fetch its catalogue.

        Raises:
            BinaryNotFoundError: The logical binary could not be resolved.
            LaunchFailedError: The process could not be started.
            HandshakeTimeoutError: No handshake within ``startup_timeout``.
            ProviderUnavailableError: The handshake failed.
            TransportClosedError: An earlier attempt failed or the client
                was closed.
        """
        async with self._connect_lock:
            if self._tools is not None:
                return
            if self._task is not None:
                msg = "Provider connection failed or was closed"
                raise TransportClosedError(self.name, msg)
            await self._start()

    async def _start(self) -> None:
        d = self._descriptor
        executable = self._executable()
        self._transport = await ProcessTransport.launch(
            executable,
            d.args,
            name=d.name,
            env=d.env or None,
            cwd=d.cwd,
            startup_grace=self._startup_grace,
        )
        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(
            self._serve(self._transport, self._ready), name=f"provider:{d.name}"
        )
        try:
            catalogue = await asyncio.wait_for(
                asyncio.shield(self._ready), d.startup_timeout
            )
        except TimeoutError:
            await self.close()
            raise HandshakeTimeoutError(d.name, d.startup_timeout) from None
        except BaseException:
            await self.close()
            raise

        self._tools = self._build_tools(catalogue)
        logger.info(
            "Connected to %s (%d tools)",
            d.name,
            len(self._tools),
            extra={"event": "provider_connected", "provider": d.name},
        )

    async def close(self) -> None:
        task = self._task
        if task is not None and not task.done():
            self._closing.set()
            if self._session is not None:
                await asyncio.wait({task}, timeout=SESSION_CLOSE_GRACE)
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if self._transport is not None:
            await self._transport.terminate()

    async def __aenter__(self) -> McpProviderClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ── Session supervisor ───────────────────────────────────────

    async def _serve(
        self,
        transport: ProcessTransport,
        ready: asyncio.Future[list[McpTool]],
    ) -> None:
        read_writer, read_stream = anyio.create_memory_object_stream(0)
        write_stream, write_reader = anyio.create_memory_object_stream(0)
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._pump_inbound, transport, read_writer)
                tg.start_soon(self._pump_outbound, transport, write_reader)
                async with ClientSession(
                    read_stream, write_stream, client_info=CLIENT_INFO
                ) as session:
                    init = await session.initialize()
                    listing = await session.list_tools()
                    self.server_info = init.serverInfo
                    self._session = session
                    if not ready.done():
                        ready.set_result(list(listing.tools))
                    await self._closing.wait()
                    self._session = None
                tg.cancel_scope.cancel()
        except Exception as exc:
            reason = describe_error(exc)
            stderr = transport.handle.stderr_text().strip()
            if stderr:
                reason = f"{reason} (stderr: {stderr.splitlines()[-1]})"
            if not ready.done():
                ready.set_exception(ProviderUnavailableError(self.name, reason))
            else:
                logger.warning(
                    "Session with %s ended: %s",
                    self.name,
                    reason,
                    extra={
                        "event": "provider_disconnected",
                        "provider": self.name,
                        "reason": reason,
                    },
                )
        finally:
            self._session = None
            if not ready.done():
                ready.cancel()
            await transport.terminate()

    async def _pump_inbound(
        self,
        transport: ProcessTransport,
        sink: MemoryObjectSendStream[SessionMessage | Exception],
    ) -> None:
        async with sink:
            while True:
                try:
                    message = await transport.receive()
                except TransportProtocolError as exc:
                    logger.debug("Dropping frame from %s: %s", self.name, exc.reason)
                    await sink.send(exc)
                    continue
                if message is None:
                    raise TransportClosedError(self.name, "Provider closed its output")
                await sink.send(SessionMessage(message))

    async def _pump_outbound(
        self,
        transport: ProcessTransport,
        source: MemoryObjectReceiveStream[SessionMessage],
    ) -> None:
        async with source:
            async for session_message in source:
                await transport.send(session_message.message)

    # ── Tools ────────────────────────────────────────────────────

    async def tools(self) -> dict[str, ToolDescriptor]:
        if self._tools is None:
            await self.connect()
        return dict(self._tools or {})

    def _build_tools(self, catalogue: list[McpTool]) -> dict[str, ToolDescriptor]:
        tools: dict[str, ToolDescriptor] = {}
        for entry in catalogue:
            if not entry.name:
                logger.warning("Ignoring unnamed tool from %s", self.name)
                continue
            tools[entry.name] = self._descriptor_for(entry)
        return tools

    def _descriptor_for(self, entry: McpTool) -> ToolDescriptor:
        tool_name = entry.name

        async def run(arguments: dict[str, Any]) -> AsyncIterator[ToolEvent]:
            result = await self.call_tool(tool_name, arguments)
            text = render_content(result.content)
            if result.isError:
                yield Failure(ProviderError(self.name, text or f"{tool_name} failed"))
            else:
                yield Result(text)

        return ToolDescriptor(
            name=tool_name,
            description=entry.description or "",
            parameters_schema=dict(entry.inputSchema or {}),
            provider=self.name,
            invoke=run,
        )

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Forward one ``tools/call`` request and await its result.

        Raises:
            TransportClosedError: Not connected, or the session ended mid-call.
            ProviderTimeoutError: No response within ``call_timeout``.
            ProviderError: The provider answered with a protocol error.
        """
        session, task = self._session, self._task
        if session is None or task is None or task.done():
            raise TransportClosedError(self.name, "Provider is not connected")

        call = asyncio.ensure_future(session.call_tool(name, arguments))
        try:
            done, _ = await asyncio.wait(
                {call, task},
                timeout=self._descriptor.call_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not call.done():
                call.cancel()

        if call in done:
            try:
                return call.result()
            except McpError as exc:
                raise ProviderError(self.name, f"{name} failed: {exc}") from exc
            except Exception as exc:
                msg = f"{name} failed: {describe_error(exc)}"
                raise ProviderError(self.name, msg) from exc
        if task in done:
            raise TransportClosedError(self.name, f"Session ended during {name}")
        msg = f"{name} timed out after {self._descriptor.call_timeout:g}s"
        raise ProviderTimeoutError(self.name, msg)


class RemoteProviderClient:
    """Provider client for a remote web search backend."""

    def __init__(
        self,
        descriptor: RemoteProviderConfig,
        *,
        backends: Mapping[str, BackendFactory] | None = None,
    ) -> None:
        self._descriptor = descriptor
        self._backends = backends
        self._tools: dict[str, ToolDescriptor] | None = None

    @property
    def name(self) -> str:
        return self._descriptor.name

    async def connect(self) -> None:
        """Build the backend's tool set.

        Raises:
            UnsupportedProviderError: Unknown backend name.
            ConfigError: Missing API key or base URL.
        """
        if self._tools is None:
            self._tools = web_search_tools(
                config=self._descriptor, backends=self._backends
            )

    async def tools(self) -> dict[str, ToolDescriptor]:
        if self._tools is None:
            await self.connect()
        return dict(self._tools or {})

    async def close(self) -> None:
        self._tools = None


def create_client(
    descriptor: ProviderDescriptor,
    *,
    resolver: Callable[[str], Path] | None = None,
    backends: Mapping[str, BackendFactory] | None = None,
) -> ProviderClient:
    """Build an unconnected client for a descriptor."""
    if isinstance(descriptor, BinaryProviderConfig):
        if resolver is None:
            return McpProviderClient(descriptor)
        return McpProviderClient(descriptor, resolver=resolver)
    return RemoteProviderClient(descriptor, backends=backends)


async def connect(
    descriptor: ProviderDescriptor,
    *,
    resolver: Callable[[str], Path] | None = None,
    backends: Mapping[str, BackendFactory] | None = None,
) -> ProviderClient:
    """Create a client and bring it up.

    Raises:
        ToolmuxError: If the provider cannot be reached.
    """
    client = create_client(descriptor, resolver=resolver, backends=backends)
    await client.connect()
    return client


@dataclass(slots=True)
class ProviderTools:
    """Outcome of querying one provider: its tools, or why it has none."""

    provider: str
    tools: dict[str, ToolDescriptor] = field(default_factory=dict)
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.error is None


async def collect_tools(client: ProviderClient) -> ProviderTools:
    """Connect and list tools; degrade any failure to an empty set.

    Cancellation still propagates (after closing the client).
    """
    try:
        await client.connect()
        tools = await client.tools()
    except asyncio.CancelledError:
        await client.close()
        raise
    except ToolmuxError as exc:
        reason = exc.reason if isinstance(exc, ProviderError) else str(exc)
    except Exception as exc:
        reason = f"{type(exc).__name__}: {exc}"
    else:
        return ProviderTools(provider=client.name, tools=tools)

    logger.warning(
        "Provider %s unavailable: %s",
        client.name,
        reason,
        extra={
            "event": "provider_unavailable",
            "provider": client.name,
            "reason": reason,
        },
    )
    try:
        await client.close()
    except Exception:
        logger.exception("Error closing provider %s", client.name)
    return ProviderTools(provider=client.name, error=reason)
