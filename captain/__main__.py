"""
Entry point for running captain as a module.

Allows running as: python -m captain
"""

from captain.cli import cli_main

if __name__ == "__main__":
    cli_main()
