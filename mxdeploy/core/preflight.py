"""Pre-flight checks.

Two groups live here:

* ``PreflightChecker`` inspects the target host read-only (services, ports,
  directories, disk, memory, network, security) and the project files.
* ``AnsibleChecks`` are the gate a deploy run passes before invoking the
  playbook: inventory syntax, connectivity, sudo, playbook syntax and the
  variables every playbook needs.

All host probes go through a CommandRunner so tests can script the output.
"""
import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from mxdeploy.core.config import get_config
from mxdeploy.core.errors import CommandFailedError, MissingFileError
from mxdeploy.core.inventory import InventoryWriter
from mxdeploy.core.lock import check_lock_status, held_hint, held_message
from mxdeploy.core.logger import get_logger
from mxdeploy.core.project import ProjectLayout
from mxdeploy.core.runner import CommandRunner
from mxdeploy.core.vault import resolve_password_file

logger = get_logger(__name__)

OK = "ok"
WARN = "warn"
ERROR = "error"
INFO = "info"

SERVICES = ["matrix-synapse", "postgresql", "redis-server", "caddy", "nginx"]
PORTS = [
    (80, "HTTP"),
    (443, "HTTPS"),
    (8008, "Matrix"),
    (5432, "PostgreSQL"),
    (6379, "Redis"),
    (2222, "SSH"),
]
DIRECTORIES = ["/etc/matrix-synapse", "/var/lib/matrix-synapse", "/var/www/element", "/etc/caddy"]
REQUIRED_COLLECTION = "community.general"
CONNECTIVITY_HOST = "8.8.8.8"
PLACEHOLDER_DOMAIN = "example.com"
REQUIRED_VARS = ["matrix_domain", "ssl_email"]


@dataclass
class CheckResult:
    section: str
    name: str
    status: str
    message: str
    hint: Optional[str] = None


@dataclass
class PreflightReport:
    environment: str
    results: List[CheckResult] = field(default_factory=list)
    existing_services: int = 0

    def add(self, section, name, status, message, hint=None) -> CheckResult:
        result = CheckResult(section, name, status, message, hint)
        self.results.append(result)
        return result

    @property
    def issues(self) -> int:
        return sum(1 for r in self.results if r.status == ERROR)

    @property
    def warnings(self) -> int:
        return sum(1 for r in self.results if r.status == WARN)

    @property
    def ok(self) -> bool:
        return self.issues == 0

    def sections(self) -> List[str]:
        seen = []
        for result in self.results:
            if result.section not in seen:
                seen.append(result.section)
        return seen


class PreflightChecker:
    """Read-only inspection of the host and project before a deployment."""

    def __init__(
        self,
        layout: ProjectLayout,
        runner: Optional[CommandRunner] = None,
        disk_usage: Callable = shutil.disk_usage,
        meminfo: Path = Path("/proc/meminfo"),
        is_root: Optional[bool] = None,
        path_exists: Callable[[str], bool] = os.path.isdir,
    ):
        self.layout = layout
        self.runner = runner or CommandRunner(timeout=get_config().command_timeout)
        self.disk_usage = disk_usage
        self.meminfo = Path(meminfo)
        self.is_root = os.geteuid() == 0 if is_root is None else is_root
        self.path_exists = path_exists

    def run(self) -> PreflightReport:
        report = PreflightReport(environment=self.layout.environment)
        self.check_files(report)
        self.check_ansible(report)
        self.check_services(report)
        self.check_ports(report)
        self.check_filesystem(report)
        self.check_resources(report)
        self.check_network(report)
        self.check_security(report)
        logger.debug(f"Pre-flight finished: {report.issues} issues, {report.warnings} warnings")
        return report

    def check_files(self, report: PreflightReport):
        section = "File Structure"
        inventory = self.layout.inventory_file
        if inventory.exists():
            report.add(section, "inventory", OK, f"Inventory file found: {inventory}")
        else:
            report.add(section, "inventory", ERROR, f"Inventory file missing: {inventory}",
                       hint="Run: mxdeploy configure")

        vault = self.layout.vault_file
        if vault.exists():
            report.add(section, "vault", OK, f"Vault file found: {vault}")
        else:
            report.add(section, "vault", ERROR, f"Vault file missing: {vault}",
                       hint=f"Run: mxdeploy secrets generate {self.layout.environment}")

        source = resolve_password_file(self.layout)
        if source:
            report.add(section, "vault-password", OK, f"Vault password file found: {source.path}")
        else:
            report.add(section, "vault-password", WARN,
                       "No vault password file found - will prompt for password")

        holder = check_lock_status(self.layout.lock_file)
        if holder:
            report.add(section, "deploy-lock", WARN, held_message(holder),
                       hint=held_hint(self.layout.lock_file))

    def check_ansible(self, report: PreflightReport):
        section = "Ansible"
        if not self.runner.which("ansible-playbook"):
            report.add(section, "ansible", ERROR, "ansible-playbook not found",
                       hint="Install with: apt install ansible")
            return

        result = self.runner.run(["ansible-playbook", "--version"])
        first_line = result.stdout.splitlines()[0] if result.stdout else ""
        version = first_line.split()[-1].rstrip("]") if first_line else "unknown"
        report.add(section, "ansible", OK, f"Ansible found: version {version}")

        collections = self.runner.run(["ansible-galaxy", "collection", "list"])
        if REQUIRED_COLLECTION in collections.stdout:
            report.add(section, "collection", OK, f"Required collection found: {REQUIRED_COLLECTION}")
        else:
            report.add(section, "collection", ERROR, f"Missing collection: {REQUIRED_COLLECTION}",
                       hint=f"Install with: ansible-galaxy collection install {REQUIRED_COLLECTION}")

    def check_services(self, report: PreflightReport):
        section = "Existing Services"
        units = self.runner.run(["systemctl", "list-units", "--type=service", "--all", "--no-legend"])
        for service in SERVICES:
            if service not in units.stdout:
                report.add(section, service, INFO, f"Service {service} not found (will be installed)")
                continue

            report.existing_services += 1
            if self.runner.run(["systemctl", "is-active", "--quiet", service]).ok:
                report.add(section, service, WARN, f"Service {service} is already running",
                           hint="Deployment will reconfigure this service")
            else:
                report.add(section, service, WARN, f"Service {service} exists but is not running")

    def _listening_sockets(self) -> str:
        for tool in ("ss", "netstat"):
            if self.runner.which(tool):
                result = self.runner.run([tool, "-tuln"])
                if result.ok:
                    return result.stdout
        return ""

    def check_ports(self, report: PreflightReport):
        section = "Ports"
        sockets = self._listening_sockets()
        for port, service in PORTS:
            if f":{port} " in sockets:
                report.add(section, str(port), WARN, f"Port {port} is already in use (expected for {service})")
            else:
                report.add(section, str(port), INFO, f"Port {port} is available for {service}")

    def check_filesystem(self, report: PreflightReport):
        section = "Filesystem"
        for directory in DIRECTORIES:
            if self.path_exists(directory):
                report.add(section, directory, WARN, f"Directory exists: {directory} (will be updated)")
            else:
                report.add(section, directory, INFO, f"Directory will be created: {directory}")

        min_gb = get_config().min_disk_gb
        free_gb = self.disk_usage("/").free // (1024 ** 3)
        if free_gb < min_gb:
            report.add(section, "disk", ERROR, f"Insufficient disk space: {free_gb}GB available",
                       hint=f"Need at least {min_gb}GB for Matrix server")
        else:
            report.add(section, "disk", OK, f"Sufficient disk space: {free_gb}GB available")

    def _memory_mb(self) -> Optional[int]:
        try:
            for line in self.meminfo.read_text().splitlines():
                if line.startswith("MemTotal:"):
                    return int(line.split()[1]) // 1024
        except (OSError, ValueError, IndexError):
            return None
        return None

    def check_resources(self, report: PreflightReport):
        section = "System Resources"
        memory_mb = self._memory_mb()
        if memory_mb is None:
            report.add(section, "memory", INFO, "Could not determine total memory")
        elif memory_mb < get_config().min_memory_mb:
            report.add(section, "memory", WARN, f"Low memory: {memory_mb}MB (recommended: 2GB+)",
                       hint="Matrix server may run slowly with limited memory")
        else:
            report.add(section, "memory", OK, f"Memory: {memory_mb}MB")

    def check_network(self, report: PreflightReport):
        section = "Network"
        if self.runner.run(["ping", "-c", "1", CONNECTIVITY_HOST]).ok:
            report.add(section, "internet", OK, "Internet connectivity: OK")
        else:
            report.add(section, "internet", ERROR, "No internet connectivity",
                       hint="Required for SSL certificates and package installation")

        if not self.layout.inventory_file.exists():
            return
        domain = InventoryWriter(self.layout).read_matrix_domain()
        if not domain or domain == PLACEHOLDER_DOMAIN:
            return
        if self.runner.run(["nslookup", domain]).ok:
            report.add(section, "dns", OK, f"DNS resolves: {domain}")
        else:
            report.add(section, "dns", WARN, f"DNS does not resolve: {domain}",
                       hint="Configure DNS before deployment for SSL certificates")

    def check_security(self, report: PreflightReport):
        section = "Security"
        if self.is_root:
            report.add(section, "user", WARN, "Running as root",
                       hint="This is normal for server deployment")
        else:
            report.add(section, "user", INFO, "Running as a regular user",
                       hint="May need sudo for some operations")

        if any(self.runner.run(["systemctl", "is-active", "--quiet", s]).ok for s in ("ssh", "sshd")):
            report.add(section, "ssh", OK, "SSH service is running")
        else:
            report.add(section, "ssh", WARN, "SSH service not found",
                       hint="Ensure SSH access is available before deployment")


class AnsibleChecks:
    """Checks run by `mxdeploy deploy` before the playbook starts."""

    def __init__(self, runner: CommandRunner, inventory: Path, playbook: Path,
                 vault_args: Optional[List[str]] = None):
        self.runner = runner
        self.inventory = Path(inventory)
        self.playbook = Path(playbook)
        self.vault_args = vault_args or []

    def _run(self, command, message, hint=None):
        result = self.runner.run(command)
        if not result.ok:
            raise CommandFailedError(command, result.returncode, result.stderr,
                                     message=message, hint=hint)
        return result

    def inventory_syntax(self):
        return self._run(
            ["ansible-inventory", "-i", str(self.inventory), "--list", *self.vault_args],
            "Inventory syntax error",
            hint=f"Check {self.inventory}",
        )

    def connectivity(self):
        return self._run(
            ["ansible", "all", "-i", str(self.inventory), "-m", "ping", *self.vault_args],
            "Cannot connect to target hosts",
            hint="Check SSH connectivity and credentials",
        )

    def sudo_access(self):
        return self._run(
            ["ansible", "all", "-i", str(self.inventory), "-m", "command",
             "-a", "whoami", "-b", *self.vault_args],
            "Sudo access check failed",
            hint="Ensure the user has passwordless sudo on the target hosts",
        )

    def playbook_syntax(self):
        return self._run(
            ["ansible-playbook", "-i", str(self.inventory), str(self.playbook),
             "--syntax-check", *self.vault_args],
            "Playbook syntax error",
        )

    def required_variables(self, result=None) -> List[str]:
        """Check matrix_domain and ssl_email are defined for every host."""
        result = result or self.inventory_syntax()
        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise CommandFailedError(result.command, result.returncode,
                                     message=f"Could not parse inventory output: {e}") from e

        hostvars = data.get("_meta", {}).get("hostvars", {})
        missing = []
        for var in REQUIRED_VARS:
            if not hostvars or any(var not in hv for hv in hostvars.values()):
                missing.append(var)
        if missing:
            raise MissingFileError(
                self.inventory,
                f"Required variables not defined: {', '.join(missing)}",
                hint="Define them in the inventory or group_vars (mxdeploy configure writes both)",
            )
        return REQUIRED_VARS

    def run_all(self):
        logger.info("Running pre-flight checks...")
        listing = self.inventory_syntax()
        logger.info("Inventory syntax valid")
        self.connectivity()
        logger.info("Host connectivity verified")
        self.sudo_access()
        logger.info("Sudo access verified")
        self.playbook_syntax()
        logger.info("Playbook syntax valid")
        self.required_variables(listing)
        logger.info("Required variables present")
