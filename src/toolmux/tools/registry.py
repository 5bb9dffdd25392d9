"""Tool registry — the merged namespace handed to the agent loop.

Holds references to :class:`ToolDescriptor` objects owned by provider
clients, resolves name collisions by policy, and exposes streaming and
flattened invocation of tools by name.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from toolmux.core.errors import ToolError, ToolmuxError, ToolNotFoundError
from toolmux.tools.base import Failure, Result, ToolDefinition, ToolResult

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator, Mapping

    from toolmux.tools.base import ToolCall, ToolDescriptor, ToolEvent

logger = logging.getLogger(__name__)


class CollisionPolicy(enum.StrEnum):
    """What to do when two providers declare the same tool name."""

    LAST_WRITE_WINS = "last_write_wins"
    PREFIX = "prefix"


@dataclass(frozen=True, slots=True)
class ToolCollision:
    """Diagnostic record of a tool name declared by two providers."""

    tool: str
    provider: str
    replaced_provider: str
    registered_as: str


class ToolRegistry:
    """Registry mapping tool names to descriptors.

    With the default last-write-wins policy a later registration replaces
    an earlier one of the same name; each replacement is logged and kept
    in :attr:`collisions`.
    """

    def __init__(
        self,
        *,
        policy: CollisionPolicy | str = CollisionPolicy.LAST_WRITE_WINS,
    ) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._policy = CollisionPolicy(policy)
        self.collisions: list[ToolCollision] = []
        self.unavailable: dict[str, str] = {}

    @property
    def policy(self) -> CollisionPolicy:
        return self._policy

    # ── Registration ─────────────────────────────────────────────

    def register(self, tool: ToolDescriptor) -> str:
        """Register a tool and return the name it was registered under."""
        existing = self._tools.get(tool.name)
        if existing is None or existing is tool:
            self._tools[tool.name] = tool
            return tool.name

        registered_as = tool.name
        if self._policy is CollisionPolicy.PREFIX:
            registered_as = self._prefixed_name(tool)
            if self._tools.get(registered_as) is tool:
                return registered_as
        self._tools[registered_as] = tool

        collision = ToolCollision(
            tool=tool.name,
            provider=tool.provider,
            replaced_provider=existing.provider,
            registered_as=registered_as,
        )
        self.collisions.append(collision)
        logger.warning(
            "Tool %s from %s collides with %s (%s, registered as %s)",
            tool.name,
            tool.provider,
            existing.provider,
            self._policy.value,
            registered_as,
            extra={
                "event": "tool_collision",
                "tool": tool.name,
                "provider": tool.provider,
                "replaced_provider": existing.provider,
            },
        )
        return registered_as

    def _prefixed_name(self, tool: ToolDescriptor) -> str:
        """Return a free ``<provider>_<tool>`` key, numbered if already taken."""
        base = f"{tool.provider}_{tool.name}"
        candidate, n = base, 2
        while candidate in self._tools and self._tools[candidate] is not tool:
            candidate = f"{base}_{n}"
            n += 1
        return candidate

    def merge(self, tools: Mapping[str, ToolDescriptor]) -> None:
        """Register every tool of one provider's tool map."""
        for tool in tools.values():
            self.register(tool)

    def mark_unavailable(self, provider: str, reason: str) -> None:
        self.unavailable[provider] = reason

    # ── Lookup ───────────────────────────────────────────────────

    def get(self, name: str) -> ToolDescriptor:
        """Get a tool by name.

        Raises:
            ToolNotFoundError: If the tool is not registered.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def list_definitions(self) -> list[ToolDefinition]:
        """Return tool definitions for all registered tools.

        Definitions carry the registered name, which differs from the
        provider's own name only for prefixed collisions.
        """
        return [
            ToolDefinition(
                name=name,
                description=tool.description,
                parameters_schema=tool.parameters_schema,
            )
            for name, tool in self._tools.items()
        ]

    def list_names(self) -> list[str]:
        """Return names of all registered tools."""
        return list(self._tools.keys())

    def items(self) -> list[tuple[str, ToolDescriptor]]:
        return list(self._tools.items())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    # ── Invocation ───────────────────────────────────────────────

    def stream(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> AsyncIterator[ToolEvent]:
        """Return the staged event stream for one call.

        Raises:
            ToolNotFoundError: If no such tool is registered.
            InvalidParametersError: If the arguments fail validation.
        """
        return self.get(name).stream(arguments)

    async def invoke(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        """Run a tool to completion and return its result content.

        Progress notices are discarded.

        Raises:
            ToolNotFoundError, InvalidParametersError: Before dispatch.
            ProviderError: If the call ends in a failure.
        """
        async for event in self.stream(name, arguments):
            if isinstance(event, Result):
                return event.content
            if isinstance(event, Failure):
                raise event.error
        msg = f"{name} produced no result"
        raise ToolError(msg)

    async def execute(self, tool_call: ToolCall) -> ToolResult:
        """Execute a tool call and return the result.

        Never raises for tool-level problems: unknown tools, invalid
        arguments, and provider failures become a :class:`ToolResult`
        with ``is_error=True``.
        """
        try:
            content = await self.invoke(tool_call.name, tool_call.arguments)
        except ToolmuxError as exc:
            return ToolResult(
                tool_call_id=tool_call.id,
                content=f"Tool execution error: {exc}",
                is_error=True,
            )
        return ToolResult(tool_call_id=tool_call.id, content=content)

