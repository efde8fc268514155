"""Remediation steps run between failed playbook attempts."""
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from mxdeploy.core.logger import get_logger
from mxdeploy.core.runner import CommandRunner

logger = get_logger(__name__)

SYNAPSE_DIRS = ["/etc/matrix-synapse", "/var/lib/matrix-synapse"]
SYNAPSE_OWNER = "matrix-synapse:matrix-synapse"
RESTART_SERVICES = ["postgresql", "redis-server"]


@dataclass
class RecoveryResult:
    action: str
    status: str  # ran | skipped | failed
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class RecoveryAction:
    """One remediation step.

    Subclasses set ``name`` and ``description`` and implement ``run``.
    ``applies`` lets an action skip itself when there is nothing to fix.
    """

    name = "action"
    description = ""

    def __init__(self, runner: Optional[CommandRunner] = None, mock: bool = False):
        self.runner = runner or CommandRunner()
        self.mock = mock

    def applies(self) -> bool:
        return True

    def run(self) -> bool:
        raise NotImplementedError


class FixOwnership(RecoveryAction):
    """chown -R the Synapse directories back to the service user."""

    name = "fix-ownership"

    def __init__(self, paths: Sequence[str] = SYNAPSE_DIRS, owner: str = SYNAPSE_OWNER,
                 runner: Optional[CommandRunner] = None, mock: bool = False):
        super().__init__(runner, mock)
        self.paths = list(paths)
        self.owner = owner
        self.description = f"Fixing file permissions ({owner})"

    def existing_paths(self) -> List[str]:
        return [p for p in self.paths if Path(p).exists()]

    def applies(self) -> bool:
        return bool(self.existing_paths())

    def run(self) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would chown -R {self.owner} {' '.join(self.paths)}")
            return True
        result = self.runner.run(["chown", "-R", self.owner, *self.existing_paths()])
        if not result.ok:
            logger.warning(f"chown failed: {result.stderr.strip()}")
        return result.ok


class RestartService(RecoveryAction):
    """systemctl restart one service."""

    def __init__(self, service: str, runner: Optional[CommandRunner] = None, mock: bool = False):
        super().__init__(runner, mock)
        self.service = service
        self.name = f"restart-{service}"
        self.description = f"Restarting {service}"

    def applies(self) -> bool:
        if self.mock:
            return True
        units = self.runner.run(["systemctl", "list-units", "--type=service", "--all", "--no-legend"])
        return self.service in units.stdout

    def run(self) -> bool:
        if self.mock:
            logger.info(f"MOCK: Would restart {self.service}")
            return True
        result = self.runner.run(["systemctl", "restart", self.service])
        if not result.ok:
            logger.warning(f"Failed to restart {self.service}: {result.stderr.strip()}")
        return result.ok


class RecoveryPlan:
    """Ordered list of recovery actions.

    Every action is attempted even if an earlier one failed; the plan is
    best-effort and never raises on a failed step.
    """

    def __init__(self, actions: Sequence[RecoveryAction]):
        self.actions = list(actions)

    def run(self) -> List[RecoveryResult]:
        results = []
        for action in self.actions:
            if not action.applies():
                logger.debug(f"Skipping {action.name}: nothing to do")
                results.append(RecoveryResult(action.name, "skipped"))
                continue

            logger.info(f"  {action.description}...")
            try:
                ok = action.run()
            except OSError as e:
                logger.warning(f"{action.name} raised: {e}")
                results.append(RecoveryResult(action.name, "failed", str(e)))
                continue
            results.append(RecoveryResult(action.name, "ran" if ok else "failed"))

        ran = sum(1 for r in results if r.status == "ran")
        failed = sum(1 for r in results if r.status == "failed")
        logger.info(f"Recovery finished: {ran} ran, {failed} failed")
        return results


def default_recovery_plan(runner: Optional[CommandRunner] = None, mock: bool = False) -> RecoveryPlan:
    """Re-own the Synapse directories, then restart PostgreSQL and Redis."""
    actions: List[RecoveryAction] = [FixOwnership(runner=runner, mock=mock)]
    actions.extend(RestartService(s, runner=runner, mock=mock) for s in RESTART_SERVICES)
    return RecoveryPlan(actions)
