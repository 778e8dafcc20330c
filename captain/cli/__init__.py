"""CLI package for captain.

Modules:
    app.py      - Main Typer app, version callback, command registration
    commands.py - run, status, health, recover and the console responder
    display.py  - Rich renderers (status, recovery, health, options)
    common.py   - Shared helpers (get_console, config loading)

Usage:
    from captain.cli import app, cli_main  # Main exports
"""
from captain.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
