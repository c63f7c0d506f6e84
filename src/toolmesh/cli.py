"""toolmesh CLI entrypoint."""

from __future__ import annotations

import click

from toolmesh import __version__


@click.group()
@click.version_option(version=__version__, prog_name="toolmesh")
def main() -> None:
    """toolmesh — serve and inspect MCP tools."""


# Register subcommands
from toolmesh.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
