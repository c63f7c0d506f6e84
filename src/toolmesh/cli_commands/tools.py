"""``toolmesh tools`` — discover tools from MCP servers."""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

import click

from toolmesh.cli_commands._output import console, print_tools_json, print_tools_table

if TYPE_CHECKING:
    from toolmesh.protocol.models import ToolDefinition


@click.group()
def tools() -> None:
    """Discover and inspect tools."""


@tools.command("discover")
@click.argument("server")
@click.option(
    "--transport",
    type=click.Choice(["stdio", "http"]),
    default="stdio",
    help="MCP server transport type.",
)
@click.option("--timeout", type=float, default=30.0, show_default=True, help="Per-request timeout in seconds.")
@click.option("--json", "as_json", is_flag=True, help="Print the raw tool definitions as JSON.")
def discover(server: str, transport: str, timeout: float, as_json: bool) -> None:
    """Discover tools from an MCP server.

    SERVER is the command (for stdio) or URL (for http) of the MCP server.
    """
    from toolmesh.config import RemoteServerRef, make_transport
    from toolmesh.protocol.session import ClientSession

    if transport == "stdio":
        ref = RemoteServerRef(name="cli-discover", transport="stdio", command=server, timeout=timeout)
    else:
        ref = RemoteServerRef(name="cli-discover", transport="http", url=server, timeout=timeout)

    async def _discover() -> list[ToolDefinition]:
        async with ClientSession(make_transport(ref), timeout=ref.timeout) as session:
            return await session.list_tools()

    try:
        definitions = asyncio.run(_discover())
    except Exception as exc:
        console.print(f"[red]Discovery error:[/red] {exc}")
        sys.exit(1)

    if as_json:
        print_tools_json(definitions)
        return

    if not definitions:
        console.print("[yellow]No tools discovered.[/yellow]")
        return

    print_tools_table(definitions)
