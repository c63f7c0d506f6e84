"""Shared CLI output formatters."""

from __future__ import annotations

import json
import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from toolmesh.protocol.models import ToolDefinition  # noqa: TC001

console = Console()
# ``serve`` owns stdout for the protocol stream; everything human-facing goes here.
err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Send ``toolmesh`` logs to stderr through rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def print_tools_table(tools: list[ToolDefinition], *, title: str = "Discovered Tools") -> None:
    """Pretty-print tool definitions as a table."""
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Parameters")

    for tool in tools:
        params = ", ".join(tool.input_schema.get("properties", {})) or "-"
        table.add_row(tool.name, _truncate(tool.description), _truncate(params, 40))

    console.print(table)


def print_tools_json(tools: list[ToolDefinition]) -> None:
    console.print_json(json.dumps([t.to_wire() for t in tools]))


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
