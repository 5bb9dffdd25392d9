"""Pydantic models for toolmux configuration."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

SERVER_SUBCOMMAND = "mcp"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = ""
    structured: bool = False


class BinaryProviderConfig(BaseModel):
    """A tool provider run as a local subprocess speaking MCP over stdio.

    Set ``binary`` to a logical name resolved by the binary resolver, or
    ``command`` to an explicit executable (absolute path or PATH lookup).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["binary"] = "binary"
    name: str = Field(min_length=1)
    command: str | None = None
    binary: str | None = None
    args: list[str] = Field(default_factory=lambda: [SERVER_SUBCOMMAND])
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    startup_timeout: float = Field(default=30.0, gt=0)
    call_timeout: float | None = Field(default=120.0, gt=0)

    @model_validator(mode="after")
    def _one_launch_target(self) -> BinaryProviderConfig:
        if (self.command is None) == (self.binary is None):
            msg = f"provider {self.name!r}: set exactly one of 'command' or 'binary'"
            raise ValueError(msg)
        return self


class RemoteProviderConfig(BaseModel):
    """A tool provider reached over HTTP (web search backends)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["remote"] = "remote"
    name: str = Field(min_length=1)
    backend: str = "duckduckgo"
    api_key: str | None = None
    api_key_env: str | None = None
    base_url: str | None = None
    timeout: float = Field(default=15.0, gt=0)


ProviderDescriptor = Annotated[
    BinaryProviderConfig | RemoteProviderConfig,
    Field(discriminator="kind"),
]


class ToolsConfig(BaseModel):
    """Tool registry configuration."""

    builtin: bool = True
    collision_policy: Literal["last_write_wins", "prefix"] = "last_write_wins"


class ToolmuxConfig(BaseModel):
    """Top-level configuration for toolmux."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    providers: list[ProviderDescriptor] = Field(default_factory=list)
