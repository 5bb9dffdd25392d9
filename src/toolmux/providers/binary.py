"""Binary resolver — maps a logical provider name to an executable path.

The filename is ``<name><platform suffix><arch suffix>``, e.g.
``kthulu-linux-x64``; Windows uses ``kthulu.exe``. Candidates are tried
in order: the working directory, ``<cwd>/bin``, the ``bin`` directory
shipped inside the installed package, then ``<prefix>/share/toolmux/bin``.

The wheel installs nothing under ``<prefix>/share/toolmux/bin``; that
directory is for binaries placed there by the user or a system package.
"""

from __future__ import annotations

import contextlib
import logging
import os
import platform as platform_mod
import sys
from pathlib import Path

from toolmux.core.errors import BinaryNotFoundError

logger = logging.getLogger(__name__)

PLATFORM_SUFFIXES: dict[str, str] = {
    "linux": "-linux",
    "darwin": "-darwin",
    "win32": ".exe",
}

ARCH_SUFFIXES: dict[str, str] = {
    "x64": "-x64",
    "arm64": "-arm64",
}

# Platforms whose suffix is final: no arch suffix is appended.
_NO_ARCH_SUFFIX: frozenset[str] = frozenset({"win32"})

_MACHINE_ALIASES: dict[str, str] = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

PACKAGE_ROOT = Path(__file__).resolve().parents[1]


def host_platform() -> str:
    """Return the running platform as ``linux``, ``darwin``, or ``win32``."""
    plat = sys.platform
    if plat.startswith("linux"):
        return "linux"
    if plat == "cygwin":
        return "win32"
    return plat


def host_arch() -> str:
    """Return the running architecture as ``x64``/``arm64`` when known."""
    machine = platform_mod.machine().lower()
    return _MACHINE_ALIASES.get(machine, machine)


def binary_filename(logical_name: str, platform: str, arch: str) -> str:
    """Build the platform-specific filename for a provider binary.

    Unknown platforms or architectures contribute no suffix.
    """
    name = logical_name + PLATFORM_SUFFIXES.get(platform, "")
    if platform not in _NO_ARCH_SUFFIX:
        name += ARCH_SUFFIXES.get(arch, "")
    return name


def candidate_paths(filename: str, *, cwd: Path | None = None) -> list[Path]:
    """Return the locations searched for ``filename``, highest priority first."""
    base = cwd or Path.cwd()
    return [
        base / filename,
        base / "bin" / filename,
        PACKAGE_ROOT / "bin" / filename,
        Path(sys.prefix) / "share" / "toolmux" / "bin" / filename,
    ]


def _ensure_executable(path: Path) -> None:
    # Already executable, read-only filesystem, or not our file.
    with contextlib.suppress(OSError):
        path.chmod(0o755)


def resolve_binary(
    logical_name: str,
    platform: str | None = None,
    arch: str | None = None,
    *,
    cwd: Path | None = None,
) -> Path | None:
    """Locate a provider binary. Returns ``None`` when no candidate exists."""
    plat = platform or host_platform()
    filename = binary_filename(logical_name, plat, arch or host_arch())
    for candidate in candidate_paths(filename, cwd=cwd):
        if candidate.is_file():
            if plat != "win32" and os.name != "nt":
                _ensure_executable(candidate)
            logger.debug("Resolved %s to %s", logical_name, candidate)
            return candidate
    return None


def require_binary(
    logical_name: str,
    platform: str | None = None,
    arch: str | None = None,
    *,
    cwd: Path | None = None,
) -> Path:
    """Like :func:`resolve_binary` but raises when nothing is found.

    Raises:
        BinaryNotFoundError: Carries the list of searched paths.
    """
    found = resolve_binary(logical_name, platform, arch, cwd=cwd)
    if found is None:
        plat = platform or host_platform()
        filename = binary_filename(logical_name, plat, arch or host_arch())
        raise BinaryNotFoundError(logical_name, candidate_paths(filename, cwd=cwd))
    return found
