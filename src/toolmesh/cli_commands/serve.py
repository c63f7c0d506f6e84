"""``toolmesh serve`` — serve configured tool providers over stdio."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from toolmesh.cli_commands._output import configure_logging, err_console


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Settings YAML file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Log level for stderr output.",
)
@click.option("--check", is_flag=True, help="Validate the settings file and exit.")
def serve(config_path: str | None, log_level: str, check: bool) -> None:
    """Serve tools over stdin/stdout until stdin closes."""
    from toolmesh.config import ServerSettings, SettingsLoader, run_stdio

    configure_logging(log_level)

    if config_path is not None:
        try:
            settings = SettingsLoader(Path(config_path)).load()
        except Exception as exc:
            err_console.print(f"[red]Settings error:[/red] {exc}")
            sys.exit(1)
    else:
        settings = ServerSettings()

    if check:
        err_console.print("[green]Settings validated successfully.[/green]")
        err_console.print(f"  Name: {settings.name}")
        err_console.print(f"  Providers: {', '.join(p.name for p in settings.providers) or '-'}")
        return

    if settings.telemetry and settings.telemetry.enabled:
        from toolmesh.utils.telemetry import configure_telemetry

        try:
            configure_telemetry(settings.telemetry, service_name=settings.name)
        except ImportError as exc:
            err_console.print(f"[red]Telemetry error:[/red] {exc}")
            sys.exit(1)

    try:
        asyncio.run(run_stdio(settings))
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        err_console.print(f"[red]Server error:[/red] {exc}")
        sys.exit(1)
