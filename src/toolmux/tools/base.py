"""Tool data types and the staged event stream.

A tool invocation produces a stream of :data:`ToolEvent` values:
any number of :class:`Progress` notices followed by exactly one terminal
element, either :class:`Result` or :class:`Failure`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from toolmux.core.errors import ProviderError
from toolmux.tools.schema import validate_arguments

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable


@dataclass(frozen=True, slots=True)
class Progress:
    """Intermediate status notice (e.g. ``Searching...``)."""

    text: str


@dataclass(frozen=True, slots=True)
class Result:
    """Terminal element carrying the tool output."""

    content: str


@dataclass(frozen=True, slots=True)
class Failure:
    """Terminal element carrying the error that ended the call."""

    error: Exception


ToolEvent = Progress | Result | Failure


def is_terminal(event: ToolEvent) -> bool:
    """Return True for the element that closes a stream."""
    return isinstance(event, Result | Failure)


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Schema definition for a tool, suitable for passing to model APIs."""

    name: str
    description: str
    parameters_schema: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by a model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Flattened result of executing a tool call."""

    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass(frozen=True, slots=True, eq=False)
class ToolDescriptor:
    """A callable tool owned by exactly one provider.

    ``invoke`` receives already-validated arguments and returns a staged
    event stream. ``validator``, when given, replaces JSON Schema
    validation and may normalize the arguments it returns.
    """

    name: str
    description: str
    parameters_schema: dict[str, Any]
    provider: str
    invoke: Callable[[dict[str, Any]], AsyncIterator[ToolEvent]] = field(repr=False)
    validator: Callable[[dict[str, Any]], dict[str, Any]] | None = field(
        default=None, repr=False
    )

    def __post_init__(self) -> None:
        if not self.name:
            msg = f"Tool name must be non-empty (provider {self.provider!r})"
            raise ValueError(msg)

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters_schema=self.parameters_schema,
        )

    def validate(self, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Validate arguments against the declared schema.

        Raises:
            InvalidParametersError: If the arguments do not conform.
        """
        args = dict(arguments or {})
        if self.validator is not None:
            return self.validator(args)
        return validate_arguments(self.name, self.parameters_schema, args)

    def stream(
        self,
        arguments: dict[str, Any] | None = None,
    ) -> AsyncIterator[ToolEvent]:
        """Validate, then return the staged event stream for one call.

        Validation runs eagerly so invalid arguments raise here, before
        anything is dispatched to the provider.
        """
        args = self.validate(arguments)
        return self._run(args)

    async def _run(self, args: dict[str, Any]) -> AsyncIterator[ToolEvent]:
        events = self.invoke(args)
        try:
            async for event in events:
                yield event
                if is_terminal(event):
                    return
        except ProviderError as exc:
            yield Failure(exc)
            return
        except Exception as exc:
            yield Failure(ProviderError(self.provider, f"{self.name} failed: {exc}"))
            return
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                await aclose()
        yield Failure(
            ProviderError(self.provider, f"{self.name} ended without a result")
        )
