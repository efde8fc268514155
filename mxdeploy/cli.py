#!/usr/bin/env python3
"""mxdeploy CLI - provision a Matrix Synapse homeserver with Ansible."""
import signal
import sys

import typer
from rich.console import Console

from mxdeploy.cli_configure_commands import register_configure_commands
from mxdeploy.cli_deploy_commands import register_deploy_commands
from mxdeploy.cli_preflight_commands import register_preflight_commands
from mxdeploy.cli_secrets_commands import register_secrets_commands
from mxdeploy.cli_support import print_error
from mxdeploy.cli_utility_commands import register_utility_commands
from mxdeploy.cli_vault_commands import register_vault_commands
from mxdeploy.core.logger import get_logger

app = typer.Typer(
    name="mxdeploy",
    help="""mxdeploy - Matrix Synapse provisioning with Ansible

Secrets, vault, inventory, pre-flight checks and deployment in one tool.

Quick start:
  mxdeploy configure              # Capture settings, write inventory + vault
  mxdeploy preflight              # Inspect the target host
  mxdeploy deploy --smart         # Deploy with backup, retry and verification

More commands: mxdeploy --help
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

# Attach modular subcommands
register_configure_commands(app, console)
register_secrets_commands(app, console)
register_vault_commands(app, console)
register_preflight_commands(app, console)
register_deploy_commands(app, console)
register_utility_commands(app, console)


def _interrupted(signum, frame):
    console.print()
    print_error(console, "Interrupted by user")
    sys.exit(130)


def main():
    """Console script entry point; Ctrl+C exits 130."""
    # Click turns KeyboardInterrupt into exit 1, so handle SIGINT before it does
    signal.signal(signal.SIGINT, _interrupted)
    app()


if __name__ == "__main__":
    main()
