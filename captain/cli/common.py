"""Common utilities and global state for the CLI.

Contains the console singleton and config loading.
This module should NOT import from the command modules to avoid circular imports.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rich.console import Console

if TYPE_CHECKING:
    from captain.config import CaptainConfig

# ============================================================================
# Global State
# ============================================================================

# Global config path override (set via --config)
_config_path: Optional[str] = None

# Console singleton
_console: Optional[Console] = None


def get_config_path() -> Optional[str]:
    """Get the config path override if set."""
    return _config_path


def set_config_path(path: Optional[str]) -> None:
    """Set the config path override."""
    global _config_path
    _config_path = path


def get_console() -> Console:
    """Get or create the console singleton."""
    global _console
    if _console is None:
        _console = Console()
    return _console


# ============================================================================
# Config Helpers
# ============================================================================


def load_config_safe() -> Optional["CaptainConfig"]:
    """
    Load config, returning None if there is no config file.

    An explicit --config path that does not exist is still an error.
    """
    from captain.config import ConfigError, load_config

    path = get_config_path()
    try:
        return load_config(path)
    except ConfigError:
        if path is not None:
            raise
        return None


def get_config_or_default() -> "CaptainConfig":
    """Get config or fall back to defaults for the current directory."""
    from captain.config import CaptainConfig

    config = load_config_safe()
    if config is not None:
        return config
    return CaptainConfig()
