"""Descriptors for the providers toolmux knows out of the box."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from toolmux.config.schema import SERVER_SUBCOMMAND, BinaryProviderConfig
from toolmux.providers.binary import host_platform

if TYPE_CHECKING:
    from toolmux.config.schema import ProviderDescriptor, ToolmuxConfig

KTHULU = "kthulu"
PLAYWRIGHT = "playwright"
PLAYWRIGHT_PACKAGE = "@playwright/mcp@latest"

CHROME_PATHS: dict[str, str] = {
    "win32": r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    "darwin": "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
}
DEFAULT_CHROME_PATH = "/usr/bin/google-chrome"


def chrome_path(platform: str | None = None) -> str:
    """Return the conventional Chrome executable location for a platform."""
    return CHROME_PATHS.get(platform or host_platform(), DEFAULT_CHROME_PATH)


def kthulu_descriptor() -> BinaryProviderConfig:
    """The bundled ``kthulu`` server, located by the binary resolver."""
    return BinaryProviderConfig(name=KTHULU, binary=KTHULU, args=[SERVER_SUBCOMMAND])


def playwright_descriptor(
    executable_path: str | None = None,
    runner: Literal["bunx", "npx"] = "bunx",
    *,
    platform: str | None = None,
) -> BinaryProviderConfig:
    """Browser automation via ``@playwright/mcp``, launched through a JS runner."""
    if runner not in ("bunx", "npx"):
        msg = f"runner must be 'bunx' or 'npx', got {runner!r}"
        raise ValueError(msg)
    return BinaryProviderConfig(
        name=PLAYWRIGHT,
        command=runner,
        args=[
            PLAYWRIGHT_PACKAGE,
            "--executable-path",
            executable_path or chrome_path(platform),
        ],
    )


def provider_descriptors(config: ToolmuxConfig) -> list[ProviderDescriptor]:
    """Ordered descriptor list for a configuration.

    With ``[tools] builtin = true`` the kthulu provider goes first, unless
    the configuration already declares a provider named ``kthulu``.
    """
    descriptors: list[ProviderDescriptor] = list(config.providers)
    if config.tools.builtin and all(d.name != KTHULU for d in descriptors):
        descriptors.insert(0, kthulu_descriptor())
    return descriptors
