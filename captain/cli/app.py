"""Main Typer app definition and routing.

This is the canonical entry point for the CLI. The app, callback, and
command registrations are all defined here.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from captain import __version__
from captain.cli.common import get_console, set_config_path

# Create Typer app
app = typer.Typer(
    name="captain",
    help="Autonomous development orchestrator with checkpoints, risk-based verification and human decisions",
    add_completion=False,
)

# Rich console for output - use singleton from common module
console = get_console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"captain version {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to captain.yaml (default: ./captain.yaml, or built-in defaults)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Captain - autonomous development orchestrator.

    Runs one task at a time, checkpoints before every mutating step, and halts
    for a human whenever a decision or a recovery is required.
    """
    if config:
        if not Path(config).is_file():
            console.print(f"[red]Error: Config file not found: {config}[/red]")
            raise typer.Exit(1)
    set_config_path(config)

    # If no subcommand and no --help, show help
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


# =========================================================================
# Command Registration
# =========================================================================

from captain.cli.commands import health, recover, run, status  # noqa: E402

app.command("run")(run)
app.command("status")(status)
app.command("health")(health)
app.command("recover")(recover)


def cli_main() -> None:
    """Entry point for the CLI."""
    app()


__all__ = ["app", "cli_main"]
