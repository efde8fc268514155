"""Utility CLI commands - version."""
import typer
from rich.console import Console

from mxdeploy import __version__

# Module-level console instance (will be set by register function)
console: Console = Console()


def version():
    """Show mxdeploy version."""
    console.print(f"mxdeploy v{__version__} - Matrix Synapse provisioning")


def register_utility_commands(app: typer.Typer, shared_console: Console):
    """Register utility commands with the main Typer app."""
    global console
    console = shared_console

    app.command()(version)
