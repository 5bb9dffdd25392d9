"""Configuration loading and validation."""

from toolmux.config.loader import load_config
from toolmux.config.schema import (
    BinaryProviderConfig,
    LoggingConfig,
    ProviderDescriptor,
    RemoteProviderConfig,
    ToolmuxConfig,
    ToolsConfig,
)

__all__ = [
    "BinaryProviderConfig",
    "LoggingConfig",
    "ProviderDescriptor",
    "RemoteProviderConfig",
    "ToolmuxConfig",
    "ToolsConfig",
    "load_config",
]
