"""Shared CLI output formatters."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from esmcp.protocols.registry import ToolRegistry

console = Console()
# Server commands own stdout as the stdio transport; their messages go here.
err_console = Console(stderr=True)


def print_tools_table(registry: ToolRegistry) -> None:
    """Pretty-print the registered tools as a table."""
    table = Table(title="Registered Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Title")
    table.add_column("Arguments")
    table.add_column("Description")

    for tool in registry:
        args = ", ".join(
            f"{f.name}: {f.kind.value}" + ("" if f.required else "?") for f in tool.fields
        )
        table.add_row(tool.name, tool.title or "", args or "-", _truncate(tool.description))

    console.print(table)


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
