"""Deploy command for mxdeploy CLI."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from mxdeploy.cli_preflight_commands import render_report
from mxdeploy.cli_support import (
    confirm_action,
    find_project,
    handle_cli_error,
    is_mock,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
    setup_file_logging,
)
from mxdeploy.core.deployer import FRESH, Deployer, DeployOptions, DeployResult
from mxdeploy.core.errors import MxDeployError, ValidationError
from mxdeploy.core.inventory import read_inventory_var
from mxdeploy.core.lock import deploy_lock, ensure_unlocked
from mxdeploy.core.logger import get_logger
from mxdeploy.core.preflight import PreflightChecker
from mxdeploy.core.project import DEFAULT_ENVIRONMENT, DEFAULT_PLAYBOOK
from mxdeploy.core.secret_generator import generate_bundle, generate_secret
from mxdeploy.core.validators import require_email
from mxdeploy.core.vault import read_password

console: Console = Console()
logger = get_logger(__name__)


def _generate_missing_vault(deployer: Deployer, email: Optional[str], interactive: bool) -> None:
    """Create the vault for --generate-secrets / --auto when it is missing."""
    vault = deployer.vault
    print_warning(console, f"Vault file not found: {vault.vault_file}")
    print_info(console, "Generating secrets...")

    if not email:
        candidate = read_inventory_var(deployer.inventory, "ssl_email") if deployer.inventory.exists() else None
        if candidate and "{{" not in candidate:
            email = candidate
    if not email and interactive:
        email = typer.prompt("Email for SSL certificates")
    if not email:
        raise ValidationError(
            "An SSL email is required to generate secrets",
            hint="Pass --email admin@example.com",
        )

    bundle = generate_bundle(ssl_email=require_email(email, "SSL email"))

    source = vault.password_source()
    if source:
        password = read_password(source.path)
    else:
        password = generate_secret(32)
        vault.save_password(password)
        print_success(console, f"Generated vault password: {vault.layout.default_password_file}")

    vault.create(bundle.to_vault_yaml(deployer.layout.environment), password)
    print_success(console, f"Vault created: {vault.vault_file}")
    if bundle.admin_password_generated:
        print_warning(console, f"Admin password (save it now): {bundle.admin_password}")


def _show_plan(deployer: Deployer, deployment_type: Optional[str]) -> None:
    opts = deployer.options
    lines = [
        f"[bold]Environment:[/bold] {opts.environment}",
        f"[bold]Playbook:[/bold]    {deployer.playbook}",
        f"[bold]Inventory:[/bold]   {deployer.inventory}",
        f"[bold]Vault:[/bold]       {deployer.vault.vault_file}",
        f"[bold]Dry run:[/bold]     {opts.dry_run}",
    ]
    if deployment_type:
        lines.append(f"[bold]Type:[/bold]        {deployment_type}")
    console.print(Panel("\n".join(lines), title="Deployment Plan", border_style="blue"))

    if opts.dry_run:
        print_warning(console, "This is a DRY RUN - no changes will be made")
    else:
        print_warning(console, "This will make changes to your servers!")


def _show_result(deployer: Deployer, result: DeployResult) -> None:
    if not result.success:
        print_header(console, "Deployment Failed")
        if deployer.options.smart:
            print_error(console, f"Deployment failed after {result.attempts} attempts")
        print_error(console, f"Check the log file: {result.log_file}")
        print_info(console, "Common troubleshooting steps:")
        for line in deployer.troubleshooting():
            console.print(f"  {line}")
        if result.backup_dir:
            print_info(console, f"Restore backup if needed: {result.backup_dir}")
        return

    print_header(console, "Deployment Completed")
    print_success(console, f"Deployment time: {result.duration:.0f} seconds")
    if result.deployment_type:
        print_success(console, f"Type: {result.deployment_type} deployment")
    if result.attempts > 1:
        print_info(console, f"Succeeded on attempt {result.attempts}")

    if result.verification:
        for status in result.verification.services:
            if status.active:
                print_success(console, f"Service {status.name}: Running")
            else:
                print_error(console, f"Service {status.name}: Not running")
        if result.verification.api_ok:
            print_success(console, "Matrix API: Responding")
        else:
            print_warning(console, "Matrix API: Not responding (may need time to start)")

    print_header(console, "Next Steps")
    for line in deployer.next_steps(result):
        console.print(line)
    print_info(console, f"Deployment log saved to: {result.log_file}")


def deploy(
    environment: str = typer.Option(DEFAULT_ENVIRONMENT, "--env", "-e", help="Environment name"),
    playbook: str = typer.Option(DEFAULT_PLAYBOOK, "--playbook", "-p", help="Playbook name (site, hardening, maintenance, ...)"),
    inventory: Optional[Path] = typer.Option(None, "--inventory", "-i", help="Inventory file override"),
    vault_password_file: Optional[Path] = typer.Option(
        None, "--vault-password-file", help="Vault password file (overrides discovery)"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Run with --check --diff"),
    skip_checks: bool = typer.Option(False, "--skip-checks", "-s", help="Skip pre-flight checks"),
    generate_secrets: bool = typer.Option(
        False, "--generate-secrets", "-g", help="Generate the vault if it is missing"
    ),
    auto: bool = typer.Option(False, "--auto", "-a", help="Unattended: no prompts, generate missing secrets"),
    smart: bool = typer.Option(
        False, "--smart", help="Detect fresh/update/recovery, back up, retry with recovery, verify"
    ),
    email: Optional[str] = typer.Option(None, "--email", help="SSL email used when generating secrets"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    project_dir: Optional[str] = typer.Option(None, "--project-dir", help="Ansible project root"),
    verbose: bool = typer.Option(False, "--verbose", help="Pass -vvv to Ansible and log debug output"),
) -> None:
    """Deploy the Matrix server with ansible-playbook.

    Examples:
        mxdeploy deploy                          # production, site playbook
        mxdeploy deploy -e staging --dry-run     # check mode against staging
        mxdeploy deploy --smart --yes            # classify, back up, retry, verify
        mxdeploy deploy -p hardening             # run playbooks/hardening.yml
    """
    setup_file_logging(verbose=verbose)
    mock = is_mock()
    options = DeployOptions(
        environment=environment,
        playbook=playbook,
        inventory=inventory,
        vault_password_file=vault_password_file,
        dry_run=dry_run,
        verbose=verbose,
        skip_checks=skip_checks,
        generate_secrets=generate_secrets or auto,
        auto=auto,
        smart=smart,
        assume_yes=yes or auto,
    )

    try:
        layout = find_project(environment, project_dir)
        deployer = Deployer(layout, options, mock=mock)

        deployer.check_environment(require_vault=not options.generate_secrets)
        ensure_unlocked(layout.lock_file, mock=mock)
        if not layout.vault_file.exists():
            _generate_missing_vault(deployer, email, interactive=not auto)

        if not skip_checks:
            if smart:
                report = PreflightChecker(layout, runner=deployer.runner).run()
                if not report.ok:
                    render_report(report, console)
                    print_warning(console, "Pre-flight checks found issues")
                    if not confirm_action("Continue anyway?", yes_flag=options.assume_yes, mock=mock):
                        print_info(console, "Deployment cancelled")
                        raise typer.Exit(0)
            deployer.ansible_checks().run_all()
            print_success(console, "Pre-flight checks passed")

        deployment_type = deployer.detect_deployment_type() if smart else None
        _show_plan(deployer, deployment_type)
        if deployment_type and deployment_type != FRESH:
            print_info(console, "A backup of the existing configuration will be taken first")

        if not confirm_action("Continue with deployment?", yes_flag=options.assume_yes, mock=mock):
            print_info(console, "Deployment cancelled")
            raise typer.Exit(0)

        with deploy_lock(layout.lock_file, mock=mock):
            result = deployer.run(deployment_type=deployment_type)
    except MxDeployError as e:
        handle_cli_error(e, console, verbose)
        return

    _show_result(deployer, result)
    if not result.success:
        raise typer.Exit(1)
    if result.verification and not result.verification.services_ok:
        print_warning(console, "Some services are not running properly")
        print_info(console, "Check logs and restart services if needed")


def register_deploy_commands(app: typer.Typer, shared_console: Console) -> None:
    """Register the deploy command with the main Typer app."""
    global console
    console = shared_console

    app.command()(deploy)
