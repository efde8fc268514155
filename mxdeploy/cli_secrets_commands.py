"""Secret generation commands for mxdeploy CLI."""
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
from mxdeploy.core.errors import MxDeployError, ValidationError
from mxdeploy.core.project import DEFAULT_ENVIRONMENT
from mxdeploy.core.runner import CommandRunner
from mxdeploy.core.secret_generator import generate_bundle, placeholder_vault_yaml
from mxdeploy.core.validators import require_email, validate_email
from mxdeploy.core.vault import VaultManager, read_password

secrets_app = typer.Typer(help="Generate Matrix server secrets", add_completion=False)
_SECRETS_APP_ATTACHED = False
console = Console()


def register_secrets_commands(app: typer.Typer, shared_console: Console) -> None:
    """Attach secrets subcommands to the main Typer app."""
    global console, _SECRETS_APP_ATTACHED
    console = shared_console

    if not _SECRETS_APP_ATTACHED:
        app.add_typer(secrets_app, name="secrets")
        _SECRETS_APP_ATTACHED = True


def _ask_email(email: Optional[str], interactive: bool) -> str:
    if email or not interactive:
        return require_email(email or "", "SSL email")
    while True:
        answer = typer.prompt("Email for SSL certificates")
        if validate_email(answer):
            return answer
        print_warning(console, "Invalid email format. Please try again.")


def _vault_password(vault: VaultManager, interactive: bool) -> str:
    """Reuse a discoverable password file, or prompt and save a new one."""
    source = vault.password_source()
    if source:
        print_info(console, f"Using vault password from {source.name}")
        return read_password(source.path)
    if not interactive:
        raise ValidationError(
            "No vault password file found",
            hint="Create .vault_pass (chmod 600) or run without --yes",
        )

    password = typer.prompt("Vault password", hide_input=True, confirmation_prompt=True)
    if not password:
        raise ValidationError("Vault password cannot be empty")
    vault.save_password(password)
    print_success(console, f"Vault password saved to {vault.layout.default_password_file}")
    return password


@secrets_app.command("generate")
def secrets_generate(
    environment: str = typer.Argument(DEFAULT_ENVIRONMENT, help="Environment name"),
    email: Optional[str] = typer.Option(None, "--email", help="Email for SSL certificates"),
    admin_username: str = typer.Option("admin", "--admin-username", help="Matrix admin user"),
    admin_password: Optional[str] = typer.Option(
        None, "--admin-password", help="Admin password (generated when omitted)"
    ),
    placeholder: bool = typer.Option(
        False, "--placeholder", help="Write CHANGE_ME placeholders instead of generated secrets"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing vault"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not prompt"),
    project_dir: Optional[str] = typer.Option(None, "--project-dir", help="Ansible project root"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show tracebacks on error"),
) -> None:
    """Generate secrets and write them into an encrypted vault.

    Examples:
        mxdeploy secrets generate                     # production, interactive
        mxdeploy secrets generate staging --email admin@example.com --yes
    """
    try:
        layout = find_project(environment, project_dir)
        runner = CommandRunner()
        # Dependencies are checked before any prompt
        runner.require(["ansible-vault"])
        vault = VaultManager(layout, runner=runner, unattended=yes)

        if layout.vault_file.exists():
            if not force and yes:
                raise ValidationError(
                    f"Vault already exists: {layout.vault_file}",
                    hint="Pass --force to overwrite it (a backup is taken first)",
                )
            if not force and not confirm_action(
                f"Vault already exists for {environment}. Overwrite it?", mock=is_mock()
            ):
                print_info(console, "Secret generation cancelled")
                raise typer.Exit(0)
            backup = vault.backup()
            print_info(console, f"Previous vault backed up to {backup}")

        interactive = not yes
        if placeholder:
            content = placeholder_vault_yaml(environment)
            bundle = None
        else:
            ssl_email = _ask_email(email, interactive)
            bundle = generate_bundle(
                admin_username=admin_username,
                admin_password=admin_password,
                ssl_email=ssl_email,
            )
            content = bundle.to_vault_yaml(environment)

        password = _vault_password(vault, interactive)
        vault.create(content, password)
        layout.update_gitignore()

        print_success(console, f"Vault created: {layout.vault_file}")
        if placeholder:
            print_warning(console, f"Replace the CHANGE_ME values: mxdeploy vault edit -e {environment}")
        elif bundle.admin_password_generated:
            console.print(Panel(
                f"[bold]Admin user:[/bold] {bundle.admin_username}\n"
                f"[bold]Admin pass:[/bold] {bundle.admin_password}",
                title="🔐 Save these credentials",
                border_style="yellow",
            ))

    except MxDeployError as e:
        handle_cli_error(e, console, verbose)
