"""Tests for vault backups and server checkpoints."""
from datetime import datetime, timedelta

import pytest

from mxdeploy.core.backup_manager import BackupManager

BASE = datetime(2024, 5, 1, 12, 0, 0)


@pytest.fixture
def vault_file(tmp_path):
    path = tmp_path / "vault.yml"
    path.write_text("$ANSIBLE_VAULT;1.1;AES256\n6162\n")
    return path


@pytest.fixture
def manager(tmp_path, fake_runner):
    return BackupManager(tmp_path / "vault-backups", runner=fake_runner)


class TestBackupVault:
    def test_backup_name_and_content(self, manager, vault_file):
        backup = manager.backup_vault(vault_file, "production", now=BASE)
        assert backup.name == "vault-production-20240501-120000.yml"
        assert backup.read_text() == vault_file.read_text()

    def test_same_second_gets_suffix(self, manager, vault_file):
        first = manager.backup_vault(vault_file, "production", now=BASE)
        second = manager.backup_vault(vault_file, "production", now=BASE)
        assert first != second
        assert second.name == "vault-production-20240501-120000-1.yml"
        assert manager.list_backups("production") == [first, second]

    def test_keeps_last_ten(self, manager, vault_file):
        created = [
            manager.backup_vault(vault_file, "production", now=BASE + timedelta(seconds=i))
            for i in range(11)
        ]

        remaining = manager.list_backups("production")
        assert len(remaining) == 10
        assert created[0] not in remaining
        assert remaining == created[1:]

    def test_other_environments_untouched(self, manager, vault_file):
        staging = manager.backup_vault(vault_file, "staging", now=BASE)
        for i in range(12):
            manager.backup_vault(vault_file, "production", now=BASE + timedelta(minutes=i))

        assert staging.exists()
        assert manager.list_backups("staging") == [staging]

    def test_keep_from_config(self, tmp_path, vault_file, fake_runner):
        manager = BackupManager(tmp_path / "b", runner=fake_runner, keep=2)
        for i in range(4):
            manager.backup_vault(vault_file, "production", now=BASE + timedelta(seconds=i))
        assert len(manager.list_backups("production")) == 2

    def test_list_without_directory(self, manager):
        assert manager.list_backups("production") == []

    def test_unrelated_files_ignored(self, manager, vault_file):
        manager.backup_dir.mkdir()
        (manager.backup_dir / "notes.txt").write_text("keep me")
        (manager.backup_dir / "vault-production-latest.yml").write_text("keep me too")

        manager.backup_vault(vault_file, "production", now=BASE)
        assert manager.cleanup_old_backups("production", keep=0) == 1
        assert (manager.backup_dir / "notes.txt").exists()
        assert (manager.backup_dir / "vault-production-latest.yml").exists()


class TestServerCheckpoint:
    def test_copies_existing_files_and_dumps_database(self, tmp_path, fake_runner):
        config = tmp_path / "homeserver.yaml"
        config.write_text("server_name: matrix.example.com\n")
        fake_runner.on("sudo", "-u", "postgres", "pg_dump", stdout="-- dump\n")
        manager = BackupManager(tmp_path / "b", runner=fake_runner)

        checkpoint = manager.create_server_checkpoint(
            backup_root=tmp_path / "root",
            files=[str(config), str(tmp_path / "Caddyfile")],
            now=BASE,
        )

        checkpoint_dir = tmp_path / "root" / "matrix-backup-20240501-120000"
        assert checkpoint["backup_dir"] == str(checkpoint_dir)
        assert checkpoint["files"] == [str(config)]
        assert (checkpoint_dir / "homeserver.yaml").exists()
        assert (checkpoint_dir / "synapse_backup.sql").read_text() == "-- dump\n"

    def test_database_skipped_when_postgres_inactive(self, tmp_path, fake_runner):
        fake_runner.on("systemctl", "is-active", returncode=3)
        manager = BackupManager(tmp_path / "b", runner=fake_runner)

        checkpoint = manager.create_server_checkpoint(backup_root=tmp_path, files=[], now=BASE)

        assert checkpoint["database"] is None
        assert not fake_runner.called("sudo")

    def test_failed_dump_is_not_fatal(self, tmp_path, fake_runner):
        fake_runner.on("sudo", returncode=1, stderr='database "synapse" does not exist')
        manager = BackupManager(tmp_path / "b", runner=fake_runner)

        checkpoint = manager.create_server_checkpoint(backup_root=tmp_path, files=[], now=BASE)
        assert checkpoint["database"] is None

    def test_mock_writes_nothing(self, tmp_path, fake_runner):
        manager = BackupManager(tmp_path / "b", runner=fake_runner, mock=True)
        checkpoint = manager.create_server_checkpoint(backup_root=tmp_path / "root", now=BASE)

        assert not (tmp_path / "root").exists()
        assert fake_runner.calls == []
        assert checkpoint["files"] == []

    def test_unwritable_dump_is_not_fatal(self, tmp_path, fake_runner):
        fake_runner.on("sudo", "-u", "postgres", "pg_dump", stdout="-- dump\n")
        (tmp_path / "root" / "matrix-backup-20240501-120000" / "synapse_backup.sql").mkdir(parents=True)
        manager = BackupManager(tmp_path / "b", runner=fake_runner)

        checkpoint = manager.create_server_checkpoint(backup_root=tmp_path / "root", files=[], now=BASE)

        assert checkpoint["database"] is None
        assert checkpoint["backup_dir"] == str(tmp_path / "root" / "matrix-backup-20240501-120000")

    def test_uncreatable_directory_reports_no_backup(self, tmp_path, fake_runner):
        blocker = tmp_path / "root"
        blocker.write_text("not a directory")
        manager = BackupManager(tmp_path / "b", runner=fake_runner)

        checkpoint = manager.create_server_checkpoint(backup_root=blocker, now=BASE)

        assert checkpoint["backup_dir"] is None
        assert fake_runner.calls == []
