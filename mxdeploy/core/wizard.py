"""Interactive configuration wizard.

The wizard walks the operator through deployment type, environment,
domains, server, admin account and security settings, shows a summary and,
once confirmed, writes the inventory, group variables and vault.

Prompting is delegated to a Prompter so the same flow drives a full-screen
whiptail dialog, plain rich prompts or a scripted prompter in tests.
"""
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import pydantic
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from mxdeploy.core.errors import MxDeployError, ValidationError
from mxdeploy.core.inventory import InventoryWriter
from mxdeploy.core.logger import get_logger
from mxdeploy.core.project import ProjectLayout
from mxdeploy.core.runner import CommandRunner
from mxdeploy.core.secret_generator import generate_bundle, generate_secret
from mxdeploy.core.validators import (
    validate_domain,
    validate_email,
    validate_ipv4_shape,
    validate_port,
)
from mxdeploy.core.vault import VaultManager, read_password
from mxdeploy.models.settings import MIN_ADMIN_PASSWORD_LENGTH, ServerSettings

logger = get_logger(__name__)

VAULT_PASSWORD_LENGTH = 32

Choice = Tuple[str, str]


class WizardCancelled(MxDeployError):
    """Raised when the operator backs out of the wizard."""


class Prompter:
    """Interface every prompt backend implements."""

    def menu(self, title: str, text: str, choices: Sequence[Choice], default: str) -> str:
        raise NotImplementedError

    def input(self, title: str, text: str, default: str = "") -> str:
        raise NotImplementedError

    def password(self, title: str, text: str) -> str:
        raise NotImplementedError

    def yesno(self, title: str, text: str, default: bool = False) -> bool:
        raise NotImplementedError

    def message(self, title: str, text: str) -> None:
        raise NotImplementedError

    def error(self, text: str) -> None:
        raise NotImplementedError


class ConsolePrompter(Prompter):
    """Line-based prompts using rich."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def _header(self, title: str):
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]")
        self.console.rule(style="blue")

    def menu(self, title, text, choices, default):
        self._header(title)
        self.console.print(text)
        for index, (_, label) in enumerate(choices, 1):
            self.console.print(f"  [bold]{index}.[/bold] {label}")
        keys = [key for key, _ in choices]
        numbers = [str(i) for i in range(1, len(choices) + 1)]
        answer = Prompt.ask(
            "Choice",
            choices=numbers,
            default=str(keys.index(default) + 1),
            console=self.console,
        )
        return keys[int(answer) - 1]

    def input(self, title, text, default=""):
        self._header(title)
        return Prompt.ask(text, default=default or None, console=self.console) or ""

    def password(self, title, text):
        self._header(title)
        return Prompt.ask(text, password=True, default="", show_default=False, console=self.console)

    def yesno(self, title, text, default=False):
        self._header(title)
        return Confirm.ask(text, default=default, console=self.console)

    def message(self, title, text):
        self._header(title)
        self.console.print(text)

    def error(self, text):
        self.console.print(f"[red]✗[/red] {text}")


class WhiptailPrompter(Prompter):
    """Full-screen dialogs through whiptail.

    whiptail draws on the terminal and writes the answer to stderr; a
    non-zero exit status means the operator pressed Cancel or Esc.
    """

    HEIGHT = 20
    WIDTH = 70

    def __init__(self, run: Callable = subprocess.run, backtitle: str = "Matrix Server Configuration"):
        self._run = run
        self.backtitle = backtitle

    @staticmethod
    def available(runner: Optional[CommandRunner] = None) -> bool:
        return bool((runner or CommandRunner()).which("whiptail"))

    def _dialog(self, title: str, args: List[str]) -> Tuple[int, str]:
        cmd = ["whiptail", "--backtitle", self.backtitle, "--title", title, *args]
        completed = self._run(cmd, stderr=subprocess.PIPE, text=True)
        return completed.returncode, (completed.stderr or "").strip()

    def _answer(self, title: str, args: List[str]) -> str:
        code, answer = self._dialog(title, args)
        if code != 0:
            raise WizardCancelled("Configuration cancelled")
        return answer

    def menu(self, title, text, choices, default):
        args = ["--default-item", default, "--menu", text,
                str(self.HEIGHT), str(self.WIDTH), str(len(choices))]
        for key, label in choices:
            args.extend([key, label])
        return self._answer(title, args)

    def input(self, title, text, default=""):
        return self._answer(title, ["--inputbox", text, str(self.HEIGHT // 2), str(self.WIDTH), default])

    def password(self, title, text):
        return self._answer(title, ["--passwordbox", text, str(self.HEIGHT // 2), str(self.WIDTH)])

    def yesno(self, title, text, default=False):
        args = ["--yesno", text, str(self.HEIGHT // 2), str(self.WIDTH)]
        if not default:
            args.insert(0, "--defaultno")
        code, _ = self._dialog(title, args)
        return code == 0

    def message(self, title, text):
        self._dialog(title, ["--msgbox", text, str(self.HEIGHT), str(self.WIDTH)])

    def error(self, text):
        self._dialog("Error", ["--msgbox", text, str(self.HEIGHT // 2), str(self.WIDTH)])


def build_settings(**values) -> ServerSettings:
    """Create ServerSettings, turning pydantic errors into ValidationError."""
    try:
        return ServerSettings(**values)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "settings"
        raise ValidationError(
            f"Invalid {location}: {first.get('msg')}",
            hint="Example: --matrix-domain chat.example.com --email admin@example.com",
        ) from e


@dataclass
class WizardResult:
    settings: ServerSettings
    files: List[Path] = field(default_factory=list)
    admin_password: Optional[str] = None
    admin_password_generated: bool = False
    vault_password_file: Optional[Path] = None
    vault_password_reused: bool = False
    vault_backup: Optional[Path] = None


class ConfigurationWizard:
    """Collect ServerSettings step by step and write the project files."""

    def __init__(
        self,
        prompter: Prompter,
        root: Path,
        runner: Optional[CommandRunner] = None,
    ):
        self.prompter = prompter
        self.root = Path(root)
        self.runner = runner or CommandRunner()
        self.values = {}

    def _ask_until_valid(self, title, text, default, check, error) -> str:
        while True:
            answer = self.prompter.input(title, text, default).strip()
            if check(answer):
                return answer
            self.prompter.error(error)

    def step_deployment_type(self):
        self.values["deployment_type"] = self.prompter.menu(
            "Deployment Type",
            "Choose your deployment scenario:",
            [("fresh", "Fresh installation (recommended)"),
             ("update", "Update existing installation"),
             ("recovery", "Recovery from broken installation")],
            "fresh",
        )

    def step_environment(self):
        self.values["environment"] = self.prompter.menu(
            "Environment Setup",
            "Choose deployment environment:",
            [("production", "Production (recommended)"),
             ("staging", "Staging/Testing")],
            "production",
        )

    def step_domains(self):
        title = "Domain Configuration"
        self.values["matrix_domain"] = self._ask_until_valid(
            title, "Matrix domain (where Element web will be hosted)", "chat.yourdomain.com",
            validate_domain, "Invalid domain format. Please try again.",
        )
        self.values["homeserver_domain"] = self._ask_until_valid(
            title, "Homeserver domain (Matrix federation domain)", "matrix.yourdomain.com",
            validate_domain, "Invalid domain format. Please try again.",
        )
        self.values["ssl_email"] = self._ask_until_valid(
            title, "SSL certificate email", "admin@yourdomain.com",
            validate_email, "Invalid email format. Please try again.",
        )

    def step_server(self):
        title = "Server Configuration"
        method = self.prompter.menu(
            title,
            "Configure server connection details:",
            [("local", "Local deployment (running on the target server)"),
             ("remote", "Remote deployment (SSH to another server)")],
            "local",
        )
        self.values["local"] = method == "local"
        if self.values["local"]:
            return

        self.values["server_ip"] = self._ask_until_valid(
            title, "Server IP address", "",
            validate_ipv4_shape, "Invalid IP address format. Please try again.",
        )
        self.values["ssh_port"] = int(self._ask_until_valid(
            title, "SSH port", "2222",
            validate_port, "SSH port must be a number between 1 and 65535.",
        ))

    def step_admin(self):
        title = "Admin Configuration"
        self.values["admin_username"] = (
            self.prompter.input(title, "Admin username", "admin").strip() or "admin"
        )
        while True:
            password = self.prompter.password(
                title, "Admin password (leave empty for auto-generation)"
            )
            if not password or len(password) >= MIN_ADMIN_PASSWORD_LENGTH:
                self.values["admin_password"] = password or None
                return
            self.prompter.error(
                f"Password must be at least {MIN_ADMIN_PASSWORD_LENGTH} characters"
            )

    def step_security(self):
        title = "Security & Privacy"
        self.values["enable_registration"] = self.prompter.yesno(
            title, "Enable user registration?", default=False
        )
        self.values["system_user"] = (
            self.prompter.input(title, "Create system user", "matrixadmin").strip() or "matrixadmin"
        )
        self.values["timezone"] = self.prompter.input(title, "Timezone", "UTC").strip() or "UTC"

    def collect(self) -> ServerSettings:
        """Run every prompt step and return the validated settings."""
        for step in (
            self.step_deployment_type,
            self.step_environment,
            self.step_domains,
            self.step_server,
            self.step_admin,
            self.step_security,
        ):
            step()
        return build_settings(**self.values)

    def summary(self, settings: ServerSettings) -> str:
        lines = []
        section = None
        for group, label, value in settings.summary_rows():
            if group != section:
                if section is not None:
                    lines.append("")
                lines.append(f"{group}:")
                section = group
            lines.append(f"  {label}: {value}")
        return "\n".join(lines)

    def confirm(self, settings: ServerSettings) -> bool:
        self.prompter.message("Configuration Summary", self.summary(settings))
        return self.prompter.yesno(
            "Confirm", "Generate configuration files with these settings?", default=True
        )

    def confirm_overwrite(self, settings: ServerSettings) -> bool:
        vault_file = ProjectLayout(self.root, settings.environment).vault_file
        if not vault_file.exists():
            return True
        return self.prompter.yesno(
            "Existing Vault",
            f"A vault already exists for {settings.environment}:\n{vault_file}\n\n"
            "Replacing it changes every secret, including the database password.\n"
            "A backup is taken first. Replace it?",
            default=False,
        )

    def run(self) -> Optional[WizardResult]:
        """Interactive flow: collect, confirm, apply. None when declined."""
        settings = self.collect()
        if not self.confirm(settings) or not self.confirm_overwrite(settings):
            logger.info("Configuration cancelled")
            return None
        return self.apply(settings, force=True)

    def apply(self, settings: ServerSettings, force: bool = False) -> WizardResult:
        """Write inventory, group vars, vault password and the encrypted vault.

        An existing vault is only replaced with ``force``, after a backup. The
        vault is encrypted with whichever password file already resolves, so
        later view, validate and deploy calls find the same password; a new
        one is generated and saved to .vault_pass only when none exists.
        """
        # Check tools first so no work is done that cannot be finished
        self.runner.require(["ansible-vault"])

        layout = ProjectLayout(self.root, settings.environment)
        vault = VaultManager(layout, runner=self.runner)
        if layout.vault_file.exists() and not force:
            raise ValidationError(
                f"Vault already exists: {layout.vault_file}",
                hint="Pass --force to replace it (a backup is taken first)",
            )

        result = WizardResult(settings=settings)
        if layout.vault_file.exists():
            result.vault_backup = vault.backup()
        result.files.extend(InventoryWriter(layout).write_all(settings))

        bundle = generate_bundle(
            admin_username=settings.admin_username,
            admin_password=settings.admin_password,
            ssl_email=settings.ssl_email,
        )
        result.admin_password = bundle.admin_password
        result.admin_password_generated = bundle.admin_password_generated

        source = vault.password_source()
        if source:
            vault_password = read_password(source.path)
            result.vault_password_file = source.path
            result.vault_password_reused = True
        else:
            vault_password = generate_secret(VAULT_PASSWORD_LENGTH)
            result.vault_password_file = vault.save_password(vault_password)
        result.files.append(vault.create(bundle.to_vault_yaml(settings.environment), vault_password))

        layout.update_gitignore()
        logger.info("Configuration files generated")
        return result


def render_summary_table(settings: ServerSettings) -> Table:
    """Summary as a rich table for the non-interactive path."""
    table = Table(title="Configuration Summary", show_header=True)
    table.add_column("Section", style="cyan")
    table.add_column("Setting")
    table.add_column("Value", style="green")
    for group, label, value in settings.summary_rows():
        table.add_row(group, label, value)
    return table
