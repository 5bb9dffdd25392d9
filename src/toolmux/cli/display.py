"""Rich display for tool listings and staged tool output.

Used by the ``tools``, ``call`` and ``search`` commands. Accepts an
optional :class:`~rich.console.Console` for dependency injection in
tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from pathlib import Path

    from toolmux.tools.registry import ToolRegistry

_DESCRIPTION_LEN = 80


def _first_line(text: str, limit: int = _DESCRIPTION_LEN) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    if len(line) <= limit:
        return line
    return line[:limit].rstrip() + " ..."


class ToolDisplay:
    """Renders registries, progress notices and tool results."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    # ── Registry ──────────────────────────────────────────────

    def show_registry(self, registry: ToolRegistry) -> None:
        """Print all registered tools, then collisions and unavailable providers."""
        if len(registry) == 0:
            self._console.print("No tools available.", style="yellow")
        else:
            table = Table(title=f"{len(registry)} tools", title_justify="left")
            table.add_column("Tool", style="bold cyan", no_wrap=True)
            table.add_column("Provider", style="green")
            table.add_column("Description")
            for name, tool in registry.items():
                table.add_row(name, tool.provider, _first_line(tool.description))
            self._console.print(table)

        for collision in registry.collisions:
            self._console.print(
                f"[yellow]collision[/yellow] {collision.tool}: "
                f"{collision.provider} over {collision.replaced_provider} "
                f"(registered as {collision.registered_as})"
            )
        for provider, reason in registry.unavailable.items():
            self._console.print(
                f"[red]unavailable[/red] {provider}: {reason}", highlight=False
            )

    # ── Staged output ─────────────────────────────────────────

    def show_progress(self, text: str) -> None:
        self._console.print(Text(text, style="dim"))

    def show_result(self, content: str, *, title: str = "Result") -> None:
        self._console.print(
            Panel(
                Text(content),
                title=f"[bold green]{title}[/bold green]",
                border_style="green",
            )
        )

    def show_failure(self, error: Exception) -> None:
        self._console.print(
            Panel(
                Text(str(error)),
                title="[bold red]Failure[/bold red]",
                border_style="red",
            )
        )

    # ── Resolver ──────────────────────────────────────────────

    def show_resolution(
        self,
        filename: str,
        found: Path | None,
        searched: list[Path],
    ) -> None:
        """Print the candidate paths for a binary, marking the one that resolved."""
        self._console.print(f"[bold]{filename}[/bold]")
        for candidate in searched:
            if found is not None and candidate == found:
                self._console.print(f"  [green]✓[/green] {candidate}", highlight=False)
            else:
                self._console.print(f"  [dim]· {candidate}[/dim]", highlight=False)
        if found is None:
            self._console.print("  [red]not found[/red]")
