"""Vault management commands for mxdeploy CLI."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from mxdeploy.cli_support import (
    find_project,
    handle_cli_error,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from mxdeploy.core.backup_manager import BackupManager
from mxdeploy.core.errors import MxDeployError
from mxdeploy.core.project import DEFAULT_ENVIRONMENT
from mxdeploy.core.runner import CommandRunner
from mxdeploy.core.vault import VaultManager

vault_app = typer.Typer(help="Manage the encrypted Ansible vault", add_completion=False)
_VAULT_APP_ATTACHED = False
console = Console()

EnvironmentOption = typer.Option(DEFAULT_ENVIRONMENT, "--env", "-e", help="Environment name")
PasswordFileOption = typer.Option(
    None, "--vault-password-file", help="Vault password file (overrides discovery)"
)
ProjectDirOption = typer.Option(None, "--project-dir", help="Ansible project root")


def register_vault_commands(app: typer.Typer, shared_console: Console) -> None:
    """Attach vault subcommands to the main Typer app."""
    global console, _VAULT_APP_ATTACHED
    console = shared_console

    if not _VAULT_APP_ATTACHED:
        app.add_typer(vault_app, name="vault")
        _VAULT_APP_ATTACHED = True


def _manager(environment: str, password_file: Optional[Path], project_dir: Optional[str]) -> VaultManager:
    layout = find_project(environment, project_dir)
    return VaultManager(layout, runner=CommandRunner(), password_file=password_file)


@vault_app.command("setup")
def vault_setup(
    environment: str = EnvironmentOption,
    project_dir: Optional[str] = ProjectDirOption,
) -> None:
    """Prepare a project for vault use (.vault_pass template, .gitignore)."""
    try:
        vault = _manager(environment, None, project_dir)
        CommandRunner().require(["ansible-vault"])

        created = vault.write_password_template()
        if created:
            print_info(console, f"Created {created}")
        source = vault.password_source()
        if source:
            print_info(console, f"Vault password file found ({source.name}): {source.path}")
        else:
            print_warning(
                console,
                f"No vault password file yet. Put the password alone in "
                f"{vault.layout.default_password_file} (see {vault.layout.password_template_file.name})",
            )

        added = vault.layout.update_gitignore()
        if added:
            print_success(console, f"Added {len(added)} entries to .gitignore")

        if vault.vault_file.exists():
            print_success(console, f"Vault file found: {vault.vault_file}")
        else:
            print_info(console, f"No vault yet. Run: mxdeploy secrets generate {environment}")
    except MxDeployError as e:
        handle_cli_error(e, console)


@vault_app.command("view")
def vault_view(
    environment: str = EnvironmentOption,
    vault_password_file: Optional[Path] = PasswordFileOption,
    project_dir: Optional[str] = ProjectDirOption,
) -> None:
    """Print the decrypted vault."""
    try:
        content = _manager(environment, vault_password_file, project_dir).view()
        console.out(content, highlight=False)
    except MxDeployError as e:
        handle_cli_error(e, console)


@vault_app.command("edit")
def vault_edit(
    environment: str = EnvironmentOption,
    vault_password_file: Optional[Path] = PasswordFileOption,
    project_dir: Optional[str] = ProjectDirOption,
) -> None:
    """Open the vault in $EDITOR."""
    try:
        vault = _manager(environment, vault_password_file, project_dir)
        vault.backup()
        vault.edit()
        print_success(console, "Vault updated")
    except MxDeployError as e:
        handle_cli_error(e, console)


@vault_app.command("rekey")
def vault_rekey(
    environment: str = EnvironmentOption,
    vault_password_file: Optional[Path] = PasswordFileOption,
    new_password_file: Optional[Path] = typer.Option(
        None, "--new-vault-password-file", help="File holding the new password"
    ),
    project_dir: Optional[str] = ProjectDirOption,
) -> None:
    """Change the vault password."""
    try:
        vault = _manager(environment, vault_password_file, project_dir)
        vault.backup()
        vault.rekey(new_password_file)
        print_success(console, "Vault password changed")
        if not new_password_file and vault.layout.default_password_file.exists():
            print_warning(console, "Update .vault_pass with the new password")
    except MxDeployError as e:
        handle_cli_error(e, console)


@vault_app.command("validate")
def vault_validate(
    environment: str = EnvironmentOption,
    vault_password_file: Optional[Path] = PasswordFileOption,
    project_dir: Optional[str] = ProjectDirOption,
) -> None:
    """Check the vault is encrypted, decryptable and free of placeholders."""
    try:
        validation = _manager(environment, vault_password_file, project_dir).validate()
    except MxDeployError as e:
        handle_cli_error(e, console)
        return

    if validation.encrypted:
        print_success(console, "Vault file is properly encrypted")
    if validation.decryptable:
        print_success(console, "Vault file can be decrypted successfully")
    elif validation.decryptable is None and validation.encrypted:
        print_info(console, "No vault password file found - manual validation required")

    for error in validation.errors:
        print_error(console, error)
    if validation.placeholders:
        print_warning(console, "Vault contains template values that should be replaced:")
        for line in validation.placeholders:
            console.print(f"    {line}")

    if not validation.ok:
        raise typer.Exit(1)


@vault_app.command("backup")
def vault_backup(
    environment: str = EnvironmentOption,
    project_dir: Optional[str] = ProjectDirOption,
) -> None:
    """Copy the vault into vault-backups/ (keeps the newest 10)."""
    try:
        backup = _manager(environment, None, project_dir).backup()
        print_success(console, f"Vault backed up to: {backup}")
    except MxDeployError as e:
        handle_cli_error(e, console)


@vault_app.command("backups")
def vault_backups(
    environment: str = EnvironmentOption,
    project_dir: Optional[str] = ProjectDirOption,
) -> None:
    """List vault backups, newest first."""
    try:
        layout = find_project(environment, project_dir)
    except MxDeployError as e:
        handle_cli_error(e, console)
        return

    backups = BackupManager(layout.backup_dir).list_backups(environment)
    if not backups:
        print_info(console, f"No backups for {environment} in {layout.backup_dir}")
        return

    table = Table(title=f"Vault backups ({environment})", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Modified", style="blue")
    table.add_column("Size", style="green", justify="right")
    for backup in reversed(backups):
        stat = backup.stat()
        table.add_row(
            backup.name,
            datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S"),
            f"{stat.st_size} B",
        )
    console.print(table)
