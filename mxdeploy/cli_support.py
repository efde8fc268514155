"""Shared utilities for mxdeploy CLI modules."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from mxdeploy.core.errors import MxDeployError
from mxdeploy.core.project import ProjectLayout


def find_project(environment: str, project_dir: Optional[str] = None) -> ProjectLayout:
    """Locate the project root for an environment.

    Precedence: explicit --project-dir, $MXDEPLOY_PROJECT_DIR, then walking up
    from the current directory.
    """
    if project_dir:
        return ProjectLayout(Path(project_dir), environment)

    if env_dir := os.environ.get("MXDEPLOY_PROJECT_DIR"):
        return ProjectLayout(Path(env_dir), environment)

    return ProjectLayout.discover(environment)


def is_mock() -> bool:
    """Return True when CLI runs in mock mode."""
    return os.environ.get("MXDEPLOY_MOCK") == "1"


def setup_file_logging(log_file: Optional[str] = None, verbose: bool = False) -> None:
    """Set up file logging for CLI commands."""
    from mxdeploy.core.logger import set_verbose
    from mxdeploy.core.logger import setup_file_logging as _setup_file_logging
    _setup_file_logging(log_file=log_file, verbose=verbose)
    if verbose:
        set_verbose(True)


def confirm_action(message: str, yes_flag: bool = False, mock: bool = False) -> bool:
    """Prompt user for confirmation unless --yes or mock mode.

    Args:
        message: Confirmation message to display
        yes_flag: Skip prompt if True (from --yes flag)
        mock: Skip prompt if True (mock mode)

    Returns:
        True if confirmed, False otherwise
    """
    if yes_flag or mock:
        return True
    return typer.confirm(message)


def handle_cli_error(
    e: Exception,
    console: Console,
    verbose: bool = False,
    exit_code: int = 1
) -> None:
    """Handle CLI errors with consistent formatting.

    Args:
        e: Exception to handle
        console: Rich console for output
        verbose: Show exception traceback if True
        exit_code: Exit code to use
    """
    console.print(f"[red]Error:[/red] {e}")
    hint = getattr(e, "hint", None) if isinstance(e, MxDeployError) else None
    if hint:
        for line in hint.splitlines():
            console.print(f"  [dim]{line}[/dim]")
    if verbose:
        console.print_exception()
    raise typer.Exit(exit_code)


def print_success(console: Console, message: str, prefix: str = "✓") -> None:
    console.print(f"[green]{prefix}[/green] {message}")


def print_error(console: Console, message: str, prefix: str = "✗") -> None:
    console.print(f"[red]{prefix}[/red] {message}")


def print_warning(console: Console, message: str, prefix: str = "⚠") -> None:
    console.print(f"[yellow]{prefix}[/yellow] {message}")


def print_info(console: Console, message: str, prefix: str = "ℹ") -> None:
    console.print(f"[cyan]{prefix}[/cyan] {message}")


def print_header(console: Console, title: str) -> None:
    """Section banner used by long-running commands."""
    console.print()
    console.rule(f"[bold cyan]{title}[/bold cyan]", style="blue")
