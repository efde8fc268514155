"""Configuration wizard command for mxdeploy CLI."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from mxdeploy.cli_support import (
    confirm_action,
    find_project,
    handle_cli_error,
    is_mock,
    print_info,
    print_success,
    print_warning,
)
from mxdeploy.core.errors import MxDeployError
from mxdeploy.core.project import DEFAULT_ENVIRONMENT
from mxdeploy.core.runner import CommandRunner
from mxdeploy.core.wizard import (
    ConfigurationWizard,
    ConsolePrompter,
    WhiptailPrompter,
    WizardCancelled,
    WizardResult,
    build_settings,
    render_summary_table,
)

console: Console = Console()


def _show_result(result: WizardResult) -> None:
    settings = result.settings
    print_success(console, "Configuration files generated")
    for path in result.files:
        console.print(f"  [cyan]{path}[/cyan]")
    if result.vault_password_reused:
        console.print(f"  [cyan]{result.vault_password_file}[/cyan] (existing vault password)")
    elif result.vault_password_file:
        console.print(f"  [cyan]{result.vault_password_file}[/cyan] (vault password, mode 600)")
    if result.vault_backup:
        print_info(console, f"Previous vault backed up to {result.vault_backup}")

    if result.admin_password_generated:
        console.print(Panel(
            f"[bold]Admin user:[/bold] {settings.admin_username}\n"
            f"[bold]Admin pass:[/bold] {result.admin_password}",
            title="🔐 Save these credentials",
            border_style="yellow",
        ))

    console.print("\n[bold]Next steps:[/bold]")
    console.print(f"  1. Point DNS for {settings.matrix_domain} and {settings.homeserver_domain} at the server")
    console.print(f"  2. mxdeploy preflight {settings.environment}")
    console.print(f"  3. mxdeploy deploy -e {settings.environment}")


def configure(
    tui: bool = typer.Option(False, "--tui", help="Use full-screen whiptail dialogs"),
    non_interactive: bool = typer.Option(
        False, "--non-interactive", help="Take every value from options, never prompt"
    ),
    environment: str = typer.Option(DEFAULT_ENVIRONMENT, "--env", "-e", help="Environment name"),
    deployment_type: str = typer.Option("fresh", "--type", help="fresh, update or recovery"),
    matrix_domain: Optional[str] = typer.Option(None, "--matrix-domain", help="Element web domain"),
    homeserver_domain: Optional[str] = typer.Option(None, "--homeserver-domain", help="Federation domain"),
    email: Optional[str] = typer.Option(None, "--email", help="SSL certificate email"),
    server_ip: Optional[str] = typer.Option(None, "--server-ip", help="Remote server IP (omit for local)"),
    ssh_port: int = typer.Option(2222, "--ssh-port", help="SSH port of the remote server"),
    admin_username: str = typer.Option("admin", "--admin-username", help="Matrix admin user"),
    admin_password: Optional[str] = typer.Option(
        None, "--admin-password", help="Admin password (generated when omitted)"
    ),
    enable_registration: bool = typer.Option(False, "--enable-registration", help="Allow public sign-up"),
    system_user: str = typer.Option("matrixadmin", "--system-user", help="System user to create"),
    timezone: str = typer.Option("UTC", "--timezone", help="Server timezone"),
    run_deploy: bool = typer.Option(False, "--deploy", help="Run mxdeploy deploy afterwards"),
    force: bool = typer.Option(False, "--force", help="Replace an existing vault (backed up first)"),
    project_dir: Optional[str] = typer.Option(None, "--project-dir", help="Ansible project root"),
) -> None:
    """Write inventory, group variables and vault for a new server.

    Examples:
        mxdeploy configure                       # rich prompts
        mxdeploy configure --tui                 # whiptail dialogs
        mxdeploy configure --non-interactive --matrix-domain chat.example.com \\
            --homeserver-domain matrix.example.com --email admin@example.com
    """
    runner = CommandRunner()
    try:
        root = find_project(environment, project_dir).root
        # Fail on missing tools before asking anything
        runner.require(["ansible-vault"])

        if non_interactive:
            settings = build_settings(
                environment=environment,
                deployment_type=deployment_type,
                matrix_domain=matrix_domain or "",
                homeserver_domain=homeserver_domain or "",
                ssl_email=email or "",
                local=server_ip is None,
                server_ip=server_ip or "127.0.0.1",
                ssh_port=ssh_port,
                admin_username=admin_username,
                admin_password=admin_password,
                enable_registration=enable_registration,
                system_user=system_user,
                timezone=timezone,
            )
            console.print(render_summary_table(settings))
            result = ConfigurationWizard(ConsolePrompter(console), root, runner).apply(settings, force=force)
        else:
            if tui and WhiptailPrompter.available(runner):
                prompter = WhiptailPrompter()
            else:
                if tui:
                    print_warning(console, "whiptail not found, falling back to console prompts")
                prompter = ConsolePrompter(console)
            result = ConfigurationWizard(prompter, root, runner).run()
            if result is None:
                print_info(console, "Configuration cancelled")
                raise typer.Exit(0)
    except WizardCancelled:
        print_info(console, "Configuration cancelled")
        raise typer.Exit(0)
    except MxDeployError as e:
        handle_cli_error(e, console)
        return

    _show_result(result)

    if run_deploy and confirm_action("Start deployment now?", yes_flag=non_interactive, mock=is_mock()):
        from mxdeploy.cli_deploy_commands import deploy

        deploy(
            environment=result.settings.environment,
            playbook="site",
            inventory=None,
            vault_password_file=None,
            dry_run=False,
            skip_checks=False,
            generate_secrets=False,
            auto=non_interactive,
            smart=result.settings.deployment_type != "fresh",
            email=None,
            yes=non_interactive,
            project_dir=str(root),
            verbose=False,
        )


def register_configure_commands(app: typer.Typer, shared_console: Console) -> None:
    """Register the configure command with the main Typer app."""
    global console
    console = shared_console

    app.command()(configure)
