"""Shared test fixtures for toolmux."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import pytest

from toolmux.config.schema import BinaryProviderConfig

FIXTURES = Path(__file__).parent / "fixtures"
ECHO_SERVER = FIXTURES / "echo_server.py"


@pytest.fixture
def echo_descriptor() -> Any:
    """Factory for a descriptor that runs the echo MCP server."""

    def _make(**overrides: Any) -> BinaryProviderConfig:
        defaults: dict[str, Any] = {
            "name": "echo",
            "command": sys.executable,
            "args": [str(ECHO_SERVER)],
            "startup_timeout": 20.0,
            "call_timeout": 10.0,
        }
        defaults.update(overrides)
        return BinaryProviderConfig(**defaults)

    return _make


@pytest.fixture
def python_script() -> Any:
    """Factory for a descriptor running an inline Python script."""

    def _make(code: str, **overrides: Any) -> BinaryProviderConfig:
        defaults: dict[str, Any] = {
            "name": "script",
            "command": sys.executable,
            "args": ["-c", code],
        }
        defaults.update(overrides)
        return BinaryProviderConfig(**defaults)

    return _make


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep user and project config files out of tests."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("TOOLMUX_CONFIG", raising=False)
    monkeypatch.delenv("BRAVE_SEARCH_API_KEY", raising=False)
    monkeypatch.delenv("SEARXNG_API_BASE_URL", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _propagate_toolmux_logs() -> Any:
    """Let caplog see records even after configure_logging ran."""
    logger = logging.getLogger("toolmux")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    logger.propagate = True
    yield
    handlers, level, propagate = saved
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
