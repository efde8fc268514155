"""Ansible Vault management: create, view, edit, rekey, validate, backup.

Every operation shells out to ``ansible-vault``. The password comes from the
first file found in the resolution chain; without one the tool prompts.
"""
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Mapping, Optional

from mxdeploy.core.backup_manager import BackupManager
from mxdeploy.core.errors import CommandFailedError, MissingFileError
from mxdeploy.core.logger import get_logger
from mxdeploy.core.project import ProjectLayout
from mxdeploy.core.runner import CommandRunner
from mxdeploy.core.secret_generator import find_placeholders

logger = get_logger(__name__)

VAULT_HEADER = "$ANSIBLE_VAULT"
MIN_VAULT_CONTENT = 100
PASSWORD_ENV_VAR = "MXDEPLOY_VAULT_PASSWORD_FILE"

PASSWORD_TEMPLATE = """# Ansible Vault password file example
#
# ansible-vault reads a password file whole, comments included, so the
# real file must hold nothing but the password:
#
#   printf '%s\\n' 'your-vault-password' > .vault_pass
#   chmod 600 .vault_pass
#
# Use .vault_pass_<env> for a per-environment password. Never commit either.
"""


@dataclass(frozen=True)
class PasswordSource:
    """Where the vault password was found."""

    name: str
    path: Path


def _is_usable_password_file(path: Path) -> bool:
    """A password file counts only if it is not blank."""
    try:
        return bool(path.read_text().strip())
    except OSError:
        return False


def password_candidates(
    layout: ProjectLayout,
    explicit: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> List[PasswordSource]:
    """Return the resolution chain, highest precedence first."""
    environ = os.environ if environ is None else environ
    home = Path(home) if home else Path.home()

    candidates = []
    if explicit:
        candidates.append(PasswordSource("explicit override", Path(explicit)))
    if environ.get(PASSWORD_ENV_VAR):
        candidates.append(PasswordSource(f"${PASSWORD_ENV_VAR}", Path(environ[PASSWORD_ENV_VAR])))
    candidates.extend([
        PasswordSource(f"environment file ({layout.environment})", layout.environment_password_file),
        PasswordSource("project default", layout.default_password_file),
        PasswordSource("project dotfile", layout.project_password_dotfile),
        PasswordSource("user default", home / ".ansible_vault_password"),
    ])
    return candidates


def resolve_password_file(
    layout: ProjectLayout,
    explicit: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Optional[PasswordSource]:
    """Find the vault password file, logging which source was used."""
    for source in password_candidates(layout, explicit, environ, home):
        if source.path.is_file() and _is_usable_password_file(source.path):
            logger.info(f"Using vault password file from {source.name}: {source.path}")
            return source
        if source.name == "explicit override":
            logger.warning(f"Vault password file not usable: {source.path}")

    logger.debug("No vault password file found")
    return None


def read_password(path: Path) -> str:
    """Return the password exactly as ansible-vault reads it: the whole file, stripped."""
    password = Path(path).read_text().strip()
    if not password:
        raise MissingFileError(path, f"Vault password file is empty: {path}")
    if password.startswith("#"):
        logger.warning(f"{path} starts with a comment; ansible-vault uses the whole file as the password")
    return password


@contextmanager
def temporary_password_file(password: str) -> Iterator[Path]:
    """Yield a private 0600 file holding the password; always removed on exit."""
    private_dir = Path(tempfile.mkdtemp(prefix="mxdeploy-"))
    path = private_dir / "vault-password"
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(f"{password}\n")
        yield path
    finally:
        shutil.rmtree(private_dir, ignore_errors=True)


def write_private_file(path: Path, content: str) -> Path:
    """Write content to path with owner-only permissions."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, 0o600)
    return path


@dataclass
class VaultValidation:
    """Result of `VaultManager.validate`."""

    encrypted: bool = False
    decryptable: Optional[bool] = None
    placeholders: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.encrypted and self.decryptable is not False and not self.errors


class VaultManager:
    """Wrap ansible-vault for one environment's vault file."""

    def __init__(
        self,
        layout: ProjectLayout,
        runner: Optional[CommandRunner] = None,
        password_file: Optional[Path] = None,
        unattended: bool = False,
        backup_manager: Optional[BackupManager] = None,
        environ: Optional[Mapping[str, str]] = None,
        home: Optional[Path] = None,
    ):
        self.layout = layout
        self.runner = runner or CommandRunner()
        self.explicit_password_file = Path(password_file) if password_file else None
        self.unattended = unattended
        self.backup_manager = backup_manager or BackupManager(layout.backup_dir, runner=self.runner)
        self._environ = environ
        self._home = home

    @property
    def vault_file(self) -> Path:
        return self.layout.vault_file

    def password_source(self) -> Optional[PasswordSource]:
        return resolve_password_file(
            self.layout, self.explicit_password_file, self._environ, self._home
        )

    def password_args(self) -> List[str]:
        """ansible-* arguments selecting the vault password."""
        source = self.password_source()
        if source:
            return [f"--vault-password-file={source.path}"]
        if self.unattended:
            raise MissingFileError(
                self.layout.default_password_file,
                "Unattended mode requires a vault password file",
                hint=f"Create {self.layout.default_password_file.name} with your vault password (chmod 600)",
            )
        logger.warning("No vault password file found, will prompt for password")
        return ["--ask-vault-pass"]

    def require_vault_file(self) -> Path:
        if not self.vault_file.exists():
            raise MissingFileError(
                self.vault_file,
                f"Vault file not found: {self.vault_file}",
                hint=f"Run: mxdeploy secrets generate {self.layout.environment}",
            )
        return self.vault_file

    def _check(self, result, action: str):
        if not result.ok:
            raise CommandFailedError(
                result.command,
                result.returncode,
                result.stderr,
                message=f"Failed to {action} vault file: {self.vault_file}",
            )
        return result

    def create(self, content: str, password: str) -> Path:
        """Encrypt plaintext content into the vault file.

        The plaintext is piped to ansible-vault on stdin and never written to
        disk; the password lives in a temporary private file for the call.
        """
        self.runner.require(["ansible-vault"])

        if len(content.encode()) < MIN_VAULT_CONTENT:
            raise ValueError(
                f"Vault content seems too small ({len(content)} bytes). Content may be missing."
            )

        self.vault_file.parent.mkdir(parents=True, exist_ok=True)
        staging = self.vault_file.with_name(self.vault_file.name + ".new")

        with temporary_password_file(password) as password_file:
            result = self.runner.run([
                "ansible-vault", "encrypt",
                f"--vault-password-file={password_file}",
                f"--output={staging}",
            ], input=content)
        try:
            self._check(result, "encrypt")
            os.replace(staging, self.vault_file)
        finally:
            if staging.exists():
                staging.unlink()

        logger.info(f"Vault file encrypted: {self.vault_file}")
        return self.vault_file

    def view(self) -> str:
        self.runner.require(["ansible-vault"])
        self.require_vault_file()
        result = self.runner.run(
            ["ansible-vault", "view", str(self.vault_file), *self.password_args()]
        )
        return self._check(result, "decrypt").stdout

    def edit(self) -> None:
        self.runner.require(["ansible-vault"])
        self.require_vault_file()
        command = ["ansible-vault", "edit", str(self.vault_file), *self.password_args()]
        returncode = self.runner.run_interactive(command)
        if returncode != 0:
            raise CommandFailedError(command, returncode, message="Vault edit failed")

    def rekey(self, new_password_file: Optional[Path] = None) -> None:
        """Change the vault password (prompts for the new one unless given)."""
        self.runner.require(["ansible-vault"])
        self.require_vault_file()
        command = ["ansible-vault", "rekey", str(self.vault_file), *self.password_args()]
        if new_password_file:
            command.append(f"--new-vault-password-file={new_password_file}")

        returncode = self.runner.run_interactive(command)
        if returncode != 0:
            raise CommandFailedError(command, returncode, message="Vault rekey failed")

        logger.info(f"Vault password changed for {self.layout.environment}")
        if self.layout.default_password_file.exists() and not new_password_file:
            logger.warning("Don't forget to update your .vault_pass file with the new password")

    def is_encrypted(self) -> bool:
        """Check the vault tool's magic header on the first line."""
        try:
            with open(self.vault_file) as f:
                first_line = f.readline()
        except OSError:
            return False
        return first_line.startswith(VAULT_HEADER)

    def validate(self) -> VaultValidation:
        """Check the header, trial-decrypt and scan for placeholder values."""
        self.require_vault_file()
        validation = VaultValidation()

        validation.encrypted = self.is_encrypted()
        if not validation.encrypted:
            validation.errors.append("Vault file is not encrypted!")
            return validation
        logger.info("Vault file is properly encrypted")

        source = self.password_source()
        if not source and self.unattended:
            logger.info("No vault password file found - manual validation required")
            return validation

        args = [f"--vault-password-file={source.path}"] if source else ["--ask-vault-pass"]
        result = self.runner.run(["ansible-vault", "view", str(self.vault_file), *args])
        validation.decryptable = result.ok
        if not result.ok:
            validation.errors.append("Failed to decrypt vault file")
            return validation
        logger.info("Vault file can be decrypted successfully")

        validation.placeholders = find_placeholders(result.stdout)
        if validation.placeholders:
            logger.warning("Vault contains template values that should be replaced")
        return validation

    def backup(self) -> Path:
        self.require_vault_file()
        return self.backup_manager.backup_vault(self.vault_file, self.layout.environment)

    def save_password(self, password: str, path: Optional[Path] = None) -> Path:
        """Store the vault password in the project password file (0600)."""
        target = write_private_file(path or self.layout.default_password_file, f"{password}\n")
        logger.info(f"Vault password saved to: {target}")
        return target

    def write_password_template(self) -> Optional[Path]:
        """Create .vault_pass.example unless it exists.

        The example lives beside the password files but is never part of the
        resolution chain, so its comments cannot end up in a password.
        """
        target = self.layout.password_template_file
        if target.exists():
            return None
        write_private_file(target, PASSWORD_TEMPLATE)
        logger.info(f"Created {target}")
        return target
