"""Main CLI application.

Click commands for toolmux: tools, call, search, resolve, init.
"""

from __future__ import annotations

import asyncio
import json as json_mod
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from toolmux import __version__
from toolmux.config.loader import load_config
from toolmux.core.errors import ConfigError, ToolmuxError
from toolmux.core.logging import configure_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from toolmux.cli.display import ToolDisplay
    from toolmux.config.schema import RemoteProviderConfig, ToolmuxConfig
    from toolmux.tools.base import ToolEvent


STARTER_CONFIG = """\
# toolmux configuration
# Providers are queried concurrently and merged in the order listed here.

[logging]
level = "INFO"
structured = false

[tools]
# Prepend the bundled kthulu provider (binary resolved from ./bin).
builtin = true
# "last_write_wins" or "prefix" (<provider>_<tool> for the later one)
collision_policy = "last_write_wins"

[[providers]]
kind = "remote"
name = "web"
backend = "duckduckgo"

# [[providers]]
# kind = "remote"
# name = "brave"
# backend = "brave"
# api_key_env = "BRAVE_SEARCH_API_KEY"

# [[providers]]
# kind = "binary"
# name = "playwright"
# command = "npx"
# args = ["@playwright/mcp@latest"]
"""


# ── Helpers ──────────────────────────────────────────────────────


def _error(msg: str) -> None:
    """Print an error message to stderr and exit."""
    click.echo(f"Error: {msg}", err=True)
    sys.exit(1)


def _load_config(ctx: click.Context) -> ToolmuxConfig:
    """Load config and set up logging, with user-friendly error handling."""
    try:
        config = load_config(path=ctx.obj["config_path"])
    except ConfigError as e:
        _error(str(e))
        raise  # unreachable, keeps mypy happy
    configure_logging(config.logging, verbose=ctx.obj["verbose"])
    return config


def _make_display() -> ToolDisplay:
    from toolmux.cli.display import ToolDisplay

    return ToolDisplay()


def _parse_args(raw: str) -> dict[str, Any]:
    try:
        value = json_mod.loads(raw)
    except json_mod.JSONDecodeError as e:
        _error(f"--args is not valid JSON: {e}")
        raise
    if not isinstance(value, dict):
        _error("--args must be a JSON object")
    return value


async def _render(events: AsyncIterator[ToolEvent], display: ToolDisplay) -> bool:
    """Show a staged stream; return False if it ended in a failure."""
    from toolmux.tools.base import Failure, Progress, Result

    async for event in events:
        if isinstance(event, Progress):
            display.show_progress(event.text)
        elif isinstance(event, Result):
            display.show_result(event.content)
        elif isinstance(event, Failure):
            display.show_failure(event.error)
            return False
    return True


# ── CLI group ────────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="toolmux")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Path to config file.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """toolmux - Tool provider integration layer.

    Launch MCP tool servers and web search backends, and expose their
    tools as one registry.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ── tools ────────────────────────────────────────────────────────


@cli.command()
@click.pass_context
def tools(ctx: click.Context) -> None:
    """List the aggregated tools of all configured providers."""
    config = _load_config(ctx)
    try:
        asyncio.run(_tools_async(config))
    except ToolmuxError as e:
        _error(str(e))


async def _tools_async(config: ToolmuxConfig) -> None:
    """Async implementation for the tools command."""
    from toolmux.providers.aggregator import ToolHost

    display = _make_display()
    async with ToolHost.from_config(config) as registry:
        display.show_registry(registry)


# ── call ─────────────────────────────────────────────────────────


@cli.command()
@click.argument("tool_name")
@click.option(
    "--args",
    "raw_args",
    default="{}",
    show_default=True,
    help="Tool arguments as a JSON object.",
)
@click.pass_context
def call(ctx: click.Context, tool_name: str, raw_args: str) -> None:
    """Invoke TOOL_NAME and stream its progress and result."""
    arguments = _parse_args(raw_args)
    config = _load_config(ctx)
    try:
        ok = asyncio.run(_call_async(config, tool_name, arguments))
    except ToolmuxError as e:
        _error(str(e))
        return
    if not ok:
        sys.exit(1)


async def _call_async(
    config: ToolmuxConfig,
    tool_name: str,
    arguments: dict[str, Any],
) -> bool:
    """Async implementation for the call command."""
    from toolmux.providers.aggregator import ToolHost

    display = _make_display()
    async with ToolHost.from_config(config) as registry:
        return await _render(registry.stream(tool_name, arguments), display)


# ── search ───────────────────────────────────────────────────────


@cli.command()
@click.argument("query")
@click.option(
    "--provider",
    default="duckduckgo",
    show_default=True,
    help="Search backend: duckduckgo, brave, or searxng.",
)
@click.option("--max-results", type=int, default=None, help="Max results.")
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    provider: str,
    max_results: int | None,
) -> None:
    """Run a web search through one backend."""
    config = _load_config(ctx)
    try:
        ok = asyncio.run(_search_async(config, query, provider, max_results))
    except ToolmuxError as e:
        _error(str(e))
        return
    if not ok:
        sys.exit(1)


def _remote_config(config: ToolmuxConfig, backend: str) -> RemoteProviderConfig | None:
    """First configured remote provider using ``backend``, if any."""
    from toolmux.config.schema import RemoteProviderConfig

    for descriptor in config.providers:
        if not isinstance(descriptor, RemoteProviderConfig):
            continue
        if descriptor.backend == backend:
            return descriptor
    return None


async def _search_async(
    config: ToolmuxConfig,
    query: str,
    provider: str,
    max_results: int | None,
) -> bool:
    """Async implementation for the search command."""
    from toolmux.tools.web_search import web_search_tools

    tools = web_search_tools(provider, config=_remote_config(config, provider))
    tool = next(iter(tools.values()))
    arguments: dict[str, Any] = {"query": query}
    if max_results is not None:
        arguments["max_results"] = max_results
    return await _render(tool.stream(arguments), _make_display())


# ── resolve ──────────────────────────────────────────────────────


@cli.command()
@click.argument("name")
@click.option(
    "--platform",
    "platform_name",
    type=click.Choice(["linux", "darwin", "win32"]),
    default=None,
    help="Target platform (default: this host).",
)
@click.option(
    "--arch",
    type=click.Choice(["x64", "arm64"]),
    default=None,
    help="Target architecture (default: this host).",
)
def resolve(name: str, platform_name: str | None, arch: str | None) -> None:
    """Show where the provider binary NAME is looked up and found."""
    from toolmux.providers.binary import (
        binary_filename,
        candidate_paths,
        host_arch,
        host_platform,
        resolve_binary,
    )

    plat = platform_name or host_platform()
    filename = binary_filename(name, plat, arch or host_arch())
    found = resolve_binary(name, plat, arch)
    _make_display().show_resolution(filename, found, candidate_paths(filename))
    if found is None:
        sys.exit(1)


# ── init ─────────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--path",
    "target",
    type=click.Path(dir_okay=False),
    default="toolmux.toml",
    show_default=True,
    help="Where to write the config.",
)
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
def init(target: str, force: bool) -> None:
    """Write a starter toolmux.toml."""
    path = Path(target)
    if path.exists() and not force:
        _error(f"{path} already exists (use --force to overwrite)")
    path.write_text(STARTER_CONFIG, encoding="utf-8")
    click.echo(f"Wrote {path}")
