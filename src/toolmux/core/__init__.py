"""Core errors and logging setup."""

from toolmux.core.errors import (
    BinaryNotFoundError,
    ConfigError,
    HandshakeTimeoutError,
    InvalidParametersError,
    LaunchFailedError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ToolError,
    ToolmuxError,
    ToolNotFoundError,
    TransportClosedError,
    TransportProtocolError,
    UnsupportedProviderError,
)
from toolmux.core.logging import JsonFormatter, configure_logging

__all__ = [
    "BinaryNotFoundError",
    "ConfigError",
    "HandshakeTimeoutError",
    "InvalidParametersError",
    "JsonFormatter",
    "LaunchFailedError",
    "ProviderAuthError",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ToolError",
    "ToolNotFoundError",
    "ToolmuxError",
    "TransportClosedError",
    "TransportProtocolError",
    "UnsupportedProviderError",
    "configure_logging",
]
