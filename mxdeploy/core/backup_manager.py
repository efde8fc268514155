"""Vault backups with retention, and best-effort server checkpoints."""
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from mxdeploy.core.config import get_config
from mxdeploy.core.logger import get_logger
from mxdeploy.core.runner import CommandRunner

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

# Files worth keeping before an update or recovery deployment
SERVER_FILES = [
    "/etc/matrix-synapse/homeserver.yaml",
    "/etc/caddy/Caddyfile",
    "/var/lib/matrix-synapse/signing.key",
]
DATABASE_NAME = "synapse"


class BackupManager:
    """Manage timestamped vault backups and pre-deploy checkpoints."""

    def __init__(
        self,
        backup_dir: Path,
        runner: Optional[CommandRunner] = None,
        mock: bool = False,
        keep: Optional[int] = None,
    ):
        self.backup_dir = Path(backup_dir)
        self.runner = runner or CommandRunner()
        self.mock = mock
        self.keep = keep if keep is not None else get_config().backup_keep

    @staticmethod
    def _pattern(environment: str) -> "re.Pattern[str]":
        return re.compile(
            rf"vault-{re.escape(environment)}-(\d{{8}}-\d{{6}})(?:-(\d+))?\.yml"
        )

    def _sort_key(self, path: Path, environment: str):
        match = self._pattern(environment).fullmatch(path.name)
        return (match.group(1), int(match.group(2) or 0))

    def backup_vault(
        self,
        vault_file: Path,
        environment: str,
        now: Optional[datetime] = None,
    ) -> Path:
        """Copy the vault file into the backup directory and prune old copies.

        Args:
            vault_file: Encrypted vault to copy
            environment: Environment name used in the backup file name
            now: Timestamp override

        Returns:
            Path of the new backup
        """
        stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        backup_file = self.backup_dir / f"vault-{environment}-{stamp}.yml"
        counter = 0
        while backup_file.exists():
            counter += 1
            backup_file = self.backup_dir / f"vault-{environment}-{stamp}-{counter}.yml"

        shutil.copy2(vault_file, backup_file)
        logger.info(f"Vault backed up to: {backup_file}")

        self.cleanup_old_backups(environment, keep=self.keep)
        return backup_file

    def list_backups(self, environment: str) -> List[Path]:
        """List backups for one environment, oldest first."""
        if not self.backup_dir.exists():
            return []

        pattern = self._pattern(environment)
        backups = [p for p in self.backup_dir.iterdir() if p.is_file() and pattern.fullmatch(p.name)]
        return sorted(backups, key=lambda p: self._sort_key(p, environment))

    def cleanup_old_backups(self, environment: str, keep: int = 10) -> int:
        """Remove old backups, keeping the newest N.

        Args:
            environment: Environment whose backups are pruned
            keep: Number of backups to keep

        Returns:
            Number of backups deleted
        """
        backups = self.list_backups(environment)
        if len(backups) <= keep:
            return 0

        logger.info(f"Cleaning old backups (keeping last {keep})...")
        deleted_count = 0
        for backup in backups[: len(backups) - keep]:
            try:
                backup.unlink()
                logger.debug(f"Deleted backup: {backup}")
                deleted_count += 1
            except OSError as e:
                logger.error(f"Failed to delete {backup}: {e}")

        return deleted_count

    def create_server_checkpoint(
        self,
        backup_root: Optional[Path] = None,
        files: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> Dict:
        """Copy Matrix configuration and dump the database before a redeploy.

        Everything here is best-effort: failures are logged, never raised.
        ``backup_dir`` is None when the checkpoint directory could not be
        created.

        Returns:
            Checkpoint dictionary with backup directory, copied files and dump path
        """
        stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
        root = Path(backup_root or get_config().backup_root)
        checkpoint_dir = root / f"matrix-backup-{stamp}"
        checkpoint = {"backup_dir": str(checkpoint_dir), "files": [], "database": None}

        if self.mock:
            logger.info(f"MOCK: Would back up server configuration to {checkpoint_dir}")
            return checkpoint

        try:
            checkpoint_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create backup directory {checkpoint_dir}: {e}")
            checkpoint["backup_dir"] = None
            return checkpoint

        for file in files if files is not None else SERVER_FILES:
            source = Path(file)
            if not source.is_file():
                continue
            try:
                shutil.copy2(source, checkpoint_dir / source.name)
                checkpoint["files"].append(str(source))
                logger.info(f"Backed up: {source}")
            except OSError as e:
                logger.warning(f"Failed to back up {source}: {e}")

        if self.runner.run(["systemctl", "is-active", "--quiet", "postgresql"]).ok:
            logger.info("Backing up PostgreSQL database...")
            result = self.runner.run(["sudo", "-u", "postgres", "pg_dump", DATABASE_NAME])
            if result.ok:
                dump = checkpoint_dir / f"{DATABASE_NAME}_backup.sql"
                try:
                    dump.write_text(result.stdout)
                    checkpoint["database"] = str(dump)
                except OSError as e:
                    logger.warning(f"Failed to write database dump {dump}: {e}")
            else:
                logger.warning("Database backup failed (may not exist yet)")

        logger.info(f"Backup created: {checkpoint_dir}")
        return checkpoint
