"""Pre-flight check command for mxdeploy CLI."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from mxdeploy.cli_support import (
    find_project,
    handle_cli_error,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
)
from mxdeploy.core.errors import MxDeployError
from mxdeploy.core.preflight import ERROR, OK, WARN, PreflightChecker, PreflightReport
from mxdeploy.core.project import DEFAULT_ENVIRONMENT

console: Console = Console()


def render_report(report: PreflightReport, out: Console) -> None:
    """Print a report grouped by section."""
    printers = {OK: print_success, WARN: print_warning, ERROR: print_error}
    for section in report.sections():
        print_header(out, section)
        for result in (r for r in report.results if r.section == section):
            printers.get(result.status, print_info)(out, result.message)
            if result.hint:
                out.print(f"    [dim]{result.hint}[/dim]")

    print_header(out, "Pre-flight Summary")
    if report.ok:
        print_success(out, "All checks passed!")
        print_info(out, f"Run: mxdeploy deploy -e {report.environment}")
    else:
        print_error(out, f"Found {report.issues} issues that need attention")
        print_info(out, "Fix the issues above before deployment")
        print_info(out, "Some warnings are normal for existing systems")

    if report.existing_services:
        print_warning(out, f"Existing services detected ({report.existing_services})")
        print_info(out, "The deployment will reconfigure them and back up first in --smart mode")


def preflight(
    environment: str = typer.Argument(DEFAULT_ENVIRONMENT, help="Environment name"),
    project_dir: Optional[str] = typer.Option(None, "--project-dir", help="Ansible project root"),
) -> None:
    """Inspect the host and project before deploying.

    Read-only: reports existing services, busy ports, disk, memory,
    network and missing files. Exits 1 when any check fails.
    """
    try:
        layout = find_project(environment, project_dir)
        report = PreflightChecker(layout).run()
    except MxDeployError as e:
        handle_cli_error(e, console)
        return

    render_report(report, console)
    if not report.ok:
        raise typer.Exit(1)


def register_preflight_commands(app: typer.Typer, shared_console: Console) -> None:
    """Register the preflight command with the main Typer app."""
    global console
    console = shared_console

    app.command()(preflight)
