"""Project directory conventions shared by every mxdeploy command."""
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from mxdeploy.core.errors import ValidationError
from mxdeploy.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_ENVIRONMENT = "production"
KNOWN_ENVIRONMENTS = ["production", "staging"]
DEFAULT_PLAYBOOK = "site"

ROOT_MARKERS = ["ansible.cfg", "playbooks", "inventory"]

GITIGNORE_ENTRIES = [
    ".vault_pass",
    ".vault_pass_*",
    "*.vault",
    "vault_password*",
    ".ansible_vault_password",
]

_ENVIRONMENT_RE = re.compile(r"[A-Za-z0-9_-]+")


def check_environment_name(environment: str) -> str:
    """Return the environment name or raise ValidationError."""
    if not environment or not _ENVIRONMENT_RE.fullmatch(environment):
        raise ValidationError(
            f"Invalid environment name: {environment!r}",
            hint=f"Use letters, digits, '-' or '_' (e.g. {', '.join(KNOWN_ENVIRONMENTS)})",
        )
    return environment


@dataclass
class ProjectLayout:
    """Paths of one environment inside an Ansible project."""

    root: Path
    environment: str = DEFAULT_ENVIRONMENT

    def __post_init__(self):
        self.root = Path(self.root)
        check_environment_name(self.environment)

    @classmethod
    def find_root(cls, start: Optional[Path] = None) -> Path:
        """Walk up from start until a directory looks like the project root."""
        start = Path(start or Path.cwd()).resolve()
        for candidate in [start, *start.parents]:
            if any((candidate / marker).exists() for marker in ROOT_MARKERS):
                return candidate
        return start

    @classmethod
    def discover(cls, environment: str = DEFAULT_ENVIRONMENT,
                 start: Optional[Path] = None) -> "ProjectLayout":
        return cls(cls.find_root(start), environment)

    # Inventory and variables
    @property
    def environment_dir(self) -> Path:
        return self.root / "inventory" / self.environment

    @property
    def inventory_file(self) -> Path:
        return self.environment_dir / "hosts.yml"

    @property
    def group_vars_file(self) -> Path:
        return self.environment_dir / "group_vars" / "all.yml"

    @property
    def vault_file(self) -> Path:
        return self.environment_dir / "group_vars" / "all" / "vault.yml"

    # Playbooks
    def playbook_file(self, name: str = DEFAULT_PLAYBOOK) -> Path:
        if name.endswith((".yml", ".yaml")):
            name = Path(name).stem
        return self.root / "playbooks" / f"{name}.yml"

    # Credentials
    @property
    def default_password_file(self) -> Path:
        return self.root / ".vault_pass"

    @property
    def environment_password_file(self) -> Path:
        return self.root / f".vault_pass_{self.environment}"

    @property
    def project_password_dotfile(self) -> Path:
        return self.root / ".ansible_vault_password"

    @property
    def password_template_file(self) -> Path:
        return self.root / ".vault_pass.example"

    # Backups, logs, state
    @property
    def backup_dir(self) -> Path:
        return self.root / "vault-backups"

    @property
    def state_dir(self) -> Path:
        return self.root / ".mxdeploy"

    @property
    def lock_file(self) -> Path:
        return self.state_dir / "deploy.lock"

    def deployment_log(self, now: Optional[datetime] = None) -> Path:
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        return self.root / f"deployment-{stamp}.log"

    def update_gitignore(self, entries: Optional[List[str]] = None) -> List[str]:
        """Append vault-related ignore entries that are missing.

        Returns:
            The entries that were added
        """
        gitignore = self.root / ".gitignore"
        existing = gitignore.read_text().splitlines() if gitignore.exists() else []
        added = [e for e in (entries or GITIGNORE_ENTRIES) if e not in existing]

        if added:
            with open(gitignore, "a") as f:
                if existing and existing[-1].strip():
                    f.write("\n")
                for entry in added:
                    f.write(f"{entry}\n")
            logger.info(f"Updated .gitignore with {len(added)} vault entries")

        return added
