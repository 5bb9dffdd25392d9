"""Configuration loading: TOML files, env var overrides, merge logic.

Discovery order (later overrides earlier):
    1. Built-in defaults (Pydantic model defaults)
    2. User config: ``~/.config/toolmux/config.toml``
    3. Project-local config: ``./toolmux.toml``
    4. ``$TOOLMUX_CONFIG`` environment variable (explicit path)
    5. Programmatic overrides (passed to ``load_config``)

Tables merge recursively; arrays (including ``[[providers]]``) are
replaced wholesale by the later source.

Environment variable overrides for remote providers:
    A remote provider's ``api_key_env`` names an env var holding its API
    key.  Without one, the backend default is used (``BRAVE_SEARCH_API_KEY``
    for brave).  SearXNG's ``base_url`` falls back to
    ``SEARXNG_API_BASE_URL``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from toolmux.core.errors import ConfigError

from .schema import RemoteProviderConfig, ToolmuxConfig

_DEFAULT_KEY_ENV: dict[str, str] = {
    "brave": "BRAVE_SEARCH_API_KEY",
}
_DEFAULT_BASE_URL_ENV: dict[str, str] = {
    "searxng": "SEARXNG_API_BASE_URL",
}


def _user_config_path() -> Path:
    """Return XDG-compliant user config path."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "toolmux" / "config.toml"


def _project_config_path() -> Path:
    """Return project-local config path."""
    return Path.cwd() / "toolmux.toml"


def _discover_config_files() -> list[Path]:
    """Return config files in merge order (first = lowest priority)."""
    paths: list[Path] = []

    user = _user_config_path()
    if user.is_file():
        paths.append(user)

    project = _project_config_path()
    if project.is_file():
        paths.append(project)

    env_path = os.environ.get("TOOLMUX_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.is_file():
            msg = f"TOOLMUX_CONFIG points to non-existent file: {env_path}"
            raise ConfigError(msg)
        paths.append(p)

    return paths


def _read_toml(path: Path) -> dict[str, Any]:
    """Read and parse a TOML file."""
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid TOML in {path}: {e}"
        raise ConfigError(msg) from e
    except OSError as e:
        msg = f"Cannot read config file {path}: {e}"
        raise ConfigError(msg) from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base. Override wins on conflicts."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_remote(provider: RemoteProviderConfig) -> RemoteProviderConfig:
    """Fill API key and base URL from the environment (returns a copy)."""
    update: dict[str, Any] = {}
    if provider.api_key is None:
        key_env = provider.api_key_env or _DEFAULT_KEY_ENV.get(provider.backend)
        if key_env and os.environ.get(key_env):
            update["api_key"] = os.environ[key_env]
    if provider.base_url is None:
        url_env = _DEFAULT_BASE_URL_ENV.get(provider.backend)
        if url_env and os.environ.get(url_env):
            update["base_url"] = os.environ[url_env]
    return provider.model_copy(update=update) if update else provider


def _resolve_env(config: ToolmuxConfig) -> None:
    """Resolve secrets from environment variables (in-place on the list)."""
    config.providers = [
        _resolve_remote(p) if isinstance(p, RemoteProviderConfig) else p
        for p in config.providers
    ]


def _check_unique_names(config: ToolmuxConfig) -> None:
    seen: set[str] = set()
    for provider in config.providers:
        if provider.name in seen:
            msg = f"Duplicate provider name: {provider.name}"
            raise ConfigError(msg)
        seen.add(provider.name)


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> ToolmuxConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config file path (highest file priority).
        overrides: Dict of overrides merged last (highest overall priority).

    Returns:
        Validated ToolmuxConfig instance.

    Raises:
        ConfigError: On invalid TOML, missing files, or validation failure.
    """
    merged: dict[str, Any] = {}

    files = _discover_config_files()

    # Explicit path overrides TOOLMUX_CONFIG
    if path is not None:
        p = Path(path)
        if not p.is_file():
            msg = f"Config file not found: {path}"
            raise ConfigError(msg)
        files.append(p)

    for config_file in files:
        data = _read_toml(config_file)
        merged = _deep_merge(merged, data)

    if overrides:
        merged = _deep_merge(merged, overrides)

    try:
        config = ToolmuxConfig.model_validate(merged)
    except Exception as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e

    _check_unique_names(config)
    _resolve_env(config)

    return config
