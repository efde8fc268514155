"""Tests for the deploy lock."""
import os

import pytest

from mxdeploy.core.lock import (
    DeployLock,
    LockError,
    check_lock_status,
    deploy_lock,
    ensure_unlocked,
    read_lock_info,
)


class TestDeployLock:
    """Test file-based locking mechanism."""

    def test_acquire_and_release(self, tmp_path):
        """Can acquire and release lock."""
        lock_file = tmp_path / "deploy.lock"
        lock = DeployLock(lock_file)

        assert lock.acquire() is True
        assert lock_file.exists()

        lock.release()
        assert not lock_file.exists()

    def test_concurrent_lock_fails(self, tmp_path):
        """Second lock attempt fails when first is held."""
        lock_file = tmp_path / "deploy.lock"
        lock1 = DeployLock(lock_file, timeout=0)
        lock1.acquire()

        lock2 = DeployLock(lock_file, timeout=0)
        with pytest.raises(LockError) as exc_info:
            lock2.acquire()

        assert "Another deployment is in progress" in str(exc_info.value)
        assert f"PID {os.getpid()}" in str(exc_info.value)
        assert str(lock_file) in exc_info.value.hint

        # Holder's PID survives the failed attempt
        assert read_lock_info(lock_file)["pid"] == str(os.getpid())
        lock1.release()

    def test_context_manager(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"

        with DeployLock(lock_file):
            assert lock_file.exists()

        assert not lock_file.exists()

    def test_lock_info_written(self, tmp_path):
        """Lock file contains PID and timestamp."""
        lock_file = tmp_path / "deploy.lock"
        lock = DeployLock(lock_file)
        lock.acquire()

        lines = lock_file.read_text().splitlines()
        assert lines[0] == str(os.getpid())
        assert "-" in lines[1]

        lock.release()

    def test_lock_directory_creation(self, tmp_path):
        lock_file = tmp_path / "project" / ".mxdeploy" / "deploy.lock"

        with DeployLock(lock_file):
            assert lock_file.parent.is_dir()

    def test_release_twice_is_harmless(self, tmp_path):
        lock = DeployLock(tmp_path / "deploy.lock")
        lock.acquire()
        lock.release()
        lock.release()


class TestDeployLockContext:
    def test_success(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        executed = False
        with deploy_lock(lock_file):
            executed = True
            assert lock_file.exists()

        assert executed
        assert not lock_file.exists()

    def test_released_when_body_raises(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        with pytest.raises(RuntimeError):
            with deploy_lock(lock_file):
                raise RuntimeError("playbook crashed")

        assert not lock_file.exists()

    def test_failure_when_locked(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        holder = DeployLock(lock_file)
        holder.acquire()

        with pytest.raises(LockError):
            with deploy_lock(lock_file, timeout=0):
                pass

        holder.release()

    def test_mock_mode_does_not_touch_disk(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        with deploy_lock(lock_file, mock=True) as lock:
            assert lock is None
        assert not lock_file.exists()


class TestCheckLockStatus:
    def test_no_lock_file(self, tmp_path):
        assert check_lock_status(tmp_path / "missing.lock") is None

    def test_lock_held(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        lock = DeployLock(lock_file)
        lock.acquire()

        status = check_lock_status(lock_file)
        assert status["pid"] == str(os.getpid())
        assert status["lock_file"] == str(lock_file)

        lock.release()

    def test_stale_lock_file(self, tmp_path):
        """A leftover file nobody holds is not an active lock."""
        lock_file = tmp_path / "deploy.lock"
        lock_file.write_text("12345\n2025-01-01 00:00:00\n")

        assert check_lock_status(lock_file) is None

    def test_ensure_unlocked_raises_while_held(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        lock = DeployLock(lock_file)
        lock.acquire()
        try:
            with pytest.raises(LockError, match="Another deployment is in progress"):
                ensure_unlocked(lock_file)
            ensure_unlocked(lock_file, mock=True)
        finally:
            lock.release()

    def test_ensure_unlocked_ignores_stale_file(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        lock_file.write_text("12345\n2025-01-01 00:00:00\n")
        ensure_unlocked(lock_file)

    def test_unreadable_info(self, tmp_path):
        lock_file = tmp_path / "deploy.lock"
        lock_file.write_text("")
        assert read_lock_info(lock_file) == {"pid": "unknown", "time": "unknown"}
