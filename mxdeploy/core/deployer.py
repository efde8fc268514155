"""Deploy orchestration around ansible-playbook.

A plain run builds the command, checks the project and runs the playbook
once. Smart mode adds deployment classification, a pre-deploy backup,
bounded retries with recovery between attempts and post-deploy
verification of the services and the Matrix client API.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import requests

from mxdeploy.core.backup_manager import BackupManager
from mxdeploy.core.config import get_config
from mxdeploy.core.errors import MissingFileError
from mxdeploy.core.inventory import read_inventory_var
from mxdeploy.core.logger import get_logger
from mxdeploy.core.preflight import AnsibleChecks
from mxdeploy.core.project import DEFAULT_ENVIRONMENT, DEFAULT_PLAYBOOK, ProjectLayout
from mxdeploy.core.recovery import SYNAPSE_DIRS, default_recovery_plan
from mxdeploy.core.retry import RetryPolicy, retry, run_with_retries
from mxdeploy.core.runner import CommandRunner
from mxdeploy.core.vault import VaultManager

logger = get_logger(__name__)

VERIFY_SERVICES = ["matrix-synapse", "postgresql", "redis-server", "caddy"]
API_PROBE_ATTEMPTS = 3
API_PROBE_DELAY = 5

FRESH = "fresh"
UPDATE = "update"
RECOVERY = "recovery"


@dataclass
class DeployOptions:
    """Everything `mxdeploy deploy` accepts on the command line."""

    environment: str = DEFAULT_ENVIRONMENT
    playbook: str = DEFAULT_PLAYBOOK
    inventory: Optional[Path] = None
    vault_password_file: Optional[Path] = None
    dry_run: bool = False
    verbose: bool = False
    skip_checks: bool = False
    generate_secrets: bool = False
    auto: bool = False
    smart: bool = False
    assume_yes: bool = False


@dataclass
class ServiceStatus:
    name: str
    active: bool


@dataclass
class VerificationReport:
    services: List[ServiceStatus] = field(default_factory=list)
    api_ok: bool = False

    @property
    def services_ok(self) -> bool:
        return all(s.active for s in self.services)


@dataclass
class DeployResult:
    success: bool
    attempts: int
    duration: float
    deployment_type: Optional[str] = None
    backup_dir: Optional[str] = None
    log_file: Optional[Path] = None
    verification: Optional[VerificationReport] = None


class Deployer:
    """Run a playbook against one environment of a project."""

    def __init__(
        self,
        layout: ProjectLayout,
        options: DeployOptions,
        runner: Optional[CommandRunner] = None,
        mock: bool = False,
        http=None,
        sleep=time.sleep,
    ):
        self.layout = layout
        self.options = options
        self.runner = runner or CommandRunner()
        self.mock = mock
        self.http = http or requests
        self.sleep = sleep
        self.vault = VaultManager(
            layout,
            runner=self.runner,
            password_file=options.vault_password_file,
            unattended=options.auto,
        )
        self.backups = BackupManager(layout.backup_dir, runner=self.runner, mock=mock)

    @property
    def inventory(self) -> Path:
        return Path(self.options.inventory) if self.options.inventory else self.layout.inventory_file

    @property
    def playbook(self) -> Path:
        return self.layout.playbook_file(self.options.playbook)

    def build_command(self) -> List[str]:
        """ansible-playbook argv for the current options."""
        cmd = [
            "ansible-playbook",
            str(self.playbook),
            "-i", str(self.inventory),
            *self.vault.password_args(),
        ]
        if self.options.dry_run:
            cmd.extend(["--check", "--diff"])
        if self.options.verbose:
            cmd.append("-vvv")
        elif self.options.smart:
            cmd.append("-v")
        return cmd

    def check_environment(self, require_vault: bool = True):
        """Fail fast on missing tools or project files."""
        self.runner.require(["ansible-playbook"])

        if not self.inventory.exists():
            raise MissingFileError(
                self.inventory,
                f"Inventory file not found: {self.inventory}",
                hint="Run: mxdeploy configure",
            )
        if not self.playbook.exists():
            raise MissingFileError(
                self.playbook,
                f"Playbook not found: {self.playbook}",
                hint=f"Available playbooks live in {self.playbook.parent}",
            )
        if require_vault:
            self.vault.require_vault_file()
        logger.info("Environment checks passed")

    def ansible_checks(self) -> AnsibleChecks:
        return AnsibleChecks(
            self.runner,
            self.inventory,
            self.playbook,
            vault_args=self.vault.password_args(),
        )

    def detect_deployment_type(self) -> str:
        """Classify the target host as fresh, update or recovery."""
        units = self.runner.run(["systemctl", "list-units", "--type=service", "--all", "--no-legend"])
        if "matrix-synapse" in units.stdout:
            logger.warning("Existing Matrix installation detected")
            return UPDATE
        if any(Path(d).exists() for d in SYNAPSE_DIRS):
            logger.warning("Matrix files found but service not running")
            return RECOVERY
        logger.info("Fresh installation detected")
        return FRESH

    def _run_playbook(self, command: List[str], log_file: Path) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would run {' '.join(command)}")
            return True
        return self.runner.stream(command, log_file=log_file, cwd=self.layout.root) == 0

    def run(self, now: Optional[datetime] = None, deployment_type: Optional[str] = None) -> DeployResult:
        """Execute the playbook (with retries and verification in smart mode).

        A deployment_type already detected by the caller is reused.
        """
        log_file = self.layout.deployment_log(now)
        backup_dir = None

        if self.options.smart:
            deployment_type = deployment_type or self.detect_deployment_type()
            if deployment_type != FRESH:
                logger.info("Creating backup of existing configuration...")
                backup_dir = self.backups.create_server_checkpoint(now=now)["backup_dir"]

        command = self.build_command()
        logger.info(f"Command: {' '.join(command)}")
        logger.info(f"Logging to: {log_file}")

        start = time.monotonic()
        if self.options.smart:
            outcome = run_with_retries(
                lambda: self._run_playbook(command, log_file),
                policy=RetryPolicy.from_config(),
                recovery=default_recovery_plan(self.runner, mock=self.mock),
                sleep=self.sleep,
            )
            success, attempts = outcome.success, outcome.attempts
        else:
            success, attempts = self._run_playbook(command, log_file), 1
        duration = time.monotonic() - start

        result = DeployResult(
            success=success,
            attempts=attempts,
            duration=duration,
            deployment_type=deployment_type,
            backup_dir=backup_dir,
            log_file=log_file,
        )
        if success:
            logger.info(f"Deployment completed successfully in {duration:.0f}s")
            if self.options.smart and not self.options.dry_run:
                result.verification = self.verify_services()
        else:
            logger.error(f"Deployment failed after {duration:.0f}s")
            logger.error(f"Check the log file: {log_file}")
        return result

    def verify_services(self) -> VerificationReport:
        """Check the core services are active and the client API answers."""
        report = VerificationReport()
        for service in VERIFY_SERVICES:
            active = self.mock or self.runner.run(["systemctl", "is-active", "--quiet", service]).ok
            report.services.append(ServiceStatus(service, active))
            if active:
                logger.info(f"Service {service}: Running")
            else:
                logger.error(f"Service {service}: Not running")

        url = get_config().matrix_api_url
        if self.mock:
            logger.info(f"MOCK: Would query {url}")
            report.api_ok = True
            return report
        # Synapse can take a few seconds to answer after its unit is active
        @retry(
            max_attempts=API_PROBE_ATTEMPTS,
            delay=API_PROBE_DELAY,
            exceptions=(requests.RequestException,),
            sleep=self.sleep,
        )
        def fetch_versions():
            response = self.http.get(url, timeout=10)
            if response.status_code != 200:
                raise requests.HTTPError(f"{url} returned HTTP {response.status_code}")
            return response

        try:
            fetch_versions()
            report.api_ok = True
        except requests.RequestException as e:
            logger.debug(f"Matrix API request failed: {e}")
            report.api_ok = False

        if report.api_ok:
            logger.info("Matrix API: Responding")
        else:
            logger.warning("Matrix API: Not responding (may need time to start)")
        return report

    def domains(self) -> Dict[str, str]:
        """Domains from the inventory, with placeholders when unreadable."""
        domains = {"matrix_domain": "your-domain.com", "matrix_homeserver_name": "matrix.your-domain.com"}
        if not self.inventory.exists():
            return domains
        for key in domains:
            value = read_inventory_var(self.inventory, key)
            if value:
                domains[key] = value
        return domains

    def next_steps(self, result: Optional[DeployResult] = None) -> List[str]:
        """Post-deployment guidance for the playbook that ran."""
        playbook = Path(self.options.playbook).stem
        domains = self.domains()

        if playbook == "hardening":
            return [
                "Server hardening completed!",
                "Security measures applied:",
                "- SSH hardened (port 2222, key-only auth)",
                "- Firewall configured",
                "- System monitoring enabled",
                "- Automatic updates configured",
                "IMPORTANT: SSH now runs on port 2222",
            ]
        if playbook == "maintenance":
            return [
                "System maintenance completed!",
                "Maintenance tasks performed:",
                "- System updates applied",
                "- Logs rotated",
                "- Security scans run",
                "- Service health checked",
            ]

        steps = [
            "1. Create an admin user:",
            "   sudo /usr/local/bin/create-matrix-admin.sh admin <password>",
            "2. Test Element web client:",
            f"   https://{domains['matrix_domain']}",
            "3. Test Matrix federation:",
            "   https://federationtester.matrix.org/",
            "4. Configure your Matrix client:",
            f"   Homeserver: https://{domains['matrix_homeserver_name']}",
            "5. Monitor services:",
            "   systemctl status matrix-synapse",
            "   journalctl -u matrix-synapse -f",
        ]
        if result and result.backup_dir:
            steps.extend(["6. Restore backup if needed:", f"   Backup location: {result.backup_dir}"])
        return steps

    def troubleshooting(self) -> List[str]:
        return [
            "1. Check the error output above",
            "2. Verify vault password is correct",
            "3. Ensure server has internet connectivity",
            "4. Check disk space: df -h",
            "5. Check memory: free -h",
            f"6. Manual deployment: ansible-playbook -i {self.inventory} {self.playbook} -vvv",
        ]
