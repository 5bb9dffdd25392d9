"""Exception hierarchy for toolmux.

Every module imports from here. The hierarchy is:

    ToolmuxError
    ├── ProviderError(provider_id)
    │   ├── ProviderAuthError
    │   ├── ProviderRateLimitError(retry_after)
    │   ├── ProviderTimeoutError
    │   ├── TransportClosedError
    │   ├── TransportProtocolError
    │   └── ProviderUnavailableError
    │       ├── BinaryNotFoundError(name, searched)
    │       ├── LaunchFailedError(returncode, stderr)
    │       └── HandshakeTimeoutError(timeout)
    ├── ToolError
    │   ├── ToolNotFoundError(name)
    │   ├── InvalidParametersError(tool_name, errors)
    │   └── UnsupportedProviderError(provider)
    └── ConfigError
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class ToolmuxError(Exception):
    """Base exception for all toolmux errors."""


# ─── Provider Errors ──────────────────────────────────────────


class ProviderError(ToolmuxError):
    """Base for provider-related errors."""

    def __init__(self, provider_id: str, message: str) -> None:
        self.provider_id = provider_id
        self.reason = message
        super().__init__(f"[{provider_id}] {message}")


class ProviderAuthError(ProviderError):
    """Invalid or missing API key."""


class ProviderRateLimitError(ProviderError):
    """Rate limit exceeded. Includes retry_after if available."""

    def __init__(self, provider_id: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        msg = "Rate limited"
        if retry_after is not None:
            msg += f" (retry after {retry_after}s)"
        super().__init__(provider_id, msg)


class ProviderTimeoutError(ProviderError):
    """A tool call did not complete in time."""


class TransportClosedError(ProviderError):
    """The subprocess channel is closed or the process has exited."""


class TransportProtocolError(ProviderError):
    """An inbound frame could not be decoded as a protocol message."""


class ProviderUnavailableError(ProviderError):
    """The provider could not be brought up; it contributes no tools."""


class BinaryNotFoundError(ProviderUnavailableError):
    """No candidate location holds the provider binary."""

    def __init__(self, name: str, searched: Sequence[Path] = ()) -> None:
        self.name = name
        self.searched = list(searched)
        msg = f"Binary not found: {name}"
        if self.searched:
            msg += f" (searched {len(self.searched)} locations)"
        super().__init__(name, msg)


class LaunchFailedError(ProviderUnavailableError):
    """Spawning the provider process failed or it exited immediately."""

    def __init__(
        self,
        provider_id: str,
        message: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(provider_id, message)


class HandshakeTimeoutError(ProviderUnavailableError):
    """The capability handshake did not finish within the window."""

    def __init__(self, provider_id: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(provider_id, f"Handshake timed out after {timeout:g}s")


# ─── Tool Errors ──────────────────────────────────────────────


class ToolError(ToolmuxError):
    """Base for errors raised to the caller of a specific tool."""


class ToolNotFoundError(ToolError):
    """No tool with this name is registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool not found: {name}")


class InvalidParametersError(ToolError):
    """Tool arguments failed schema validation; nothing was dispatched."""

    def __init__(self, tool_name: str, errors: Sequence[str]) -> None:
        self.tool_name = tool_name
        self.errors = list(errors)
        detail = "; ".join(self.errors) or "invalid arguments"
        super().__init__(f"Invalid parameters for {tool_name}: {detail}")


class UnsupportedProviderError(ToolError):
    """Unknown search backend requested."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unsupported provider: {provider}")


# ─── Configuration Errors ─────────────────────────────────────


class ConfigError(ToolmuxError):
    """Invalid configuration."""
