"""Deploy locking.

Prevents two deploy runs against the same project at the same time.
"""
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from mxdeploy.core.errors import MxDeployError
from mxdeploy.core.logger import get_logger

logger = get_logger(__name__)


class LockError(MxDeployError):
    """Raised when the deploy lock is held by another process."""


class DeployLock:
    """flock-based lock file holding the owner's PID and start time."""

    def __init__(self, lock_file: Path, timeout: int = 0):
        """Initialize lock.

        Args:
            lock_file: Path to lock file (usually ``<project>/.mxdeploy/deploy.lock``)
            timeout: Seconds to wait for lock (0 = fail immediately)
        """
        self.lock_file = Path(lock_file)
        self.timeout = timeout
        self.lock_fd = None

    def acquire(self) -> bool:
        """Acquire the lock.

        Raises:
            LockError: If another deploy holds it
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        # a+ so a failed attempt doesn't clobber the holder's PID
        self.lock_fd = open(self.lock_file, "a+")

        start_time = time.time()
        while True:
            try:
                fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError:
                if time.time() - start_time >= self.timeout:
                    info = read_lock_info(self.lock_file)
                    self.lock_fd.close()
                    self.lock_fd = None
                    raise LockError(held_message(info), hint=held_hint(self.lock_file))
                time.sleep(0.5)

        self.lock_fd.seek(0)
        self.lock_fd.truncate()
        self.lock_fd.write(f"{os.getpid()}\n{time.strftime('%Y-%m-%d %H:%M:%S')}\n")
        self.lock_fd.flush()
        logger.debug(f"Acquired deploy lock: {self.lock_file}")
        return True

    def release(self):
        if self.lock_fd is None:
            return
        try:
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_UN)
            self.lock_fd.close()
        finally:
            self.lock_fd = None

        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass
        logger.debug(f"Released deploy lock: {self.lock_file}")

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def held_message(info: dict) -> str:
    return f"Another deployment is in progress (PID {info['pid']} since {info['time']})"


def held_hint(lock_file: Path) -> str:
    return f"Wait for it to finish, or remove {lock_file} if stale"


def read_lock_info(lock_file: Path) -> dict:
    """Read the PID and start time recorded in a lock file."""
    try:
        lines = Path(lock_file).read_text().splitlines()
    except OSError:
        lines = []
    if len(lines) >= 2:
        return {"pid": lines[0].strip(), "time": lines[1].strip()}
    return {"pid": "unknown", "time": "unknown"}


@contextmanager
def deploy_lock(lock_file: Path, timeout: int = 0, mock: bool = False):
    """Hold the deploy lock for the duration of the block.

    Usage:
        with deploy_lock(layout.lock_file):
            deployer.run()
    """
    if mock:
        logger.info(f"MOCK: Would lock {lock_file}")
        yield None
        return

    lock = DeployLock(lock_file, timeout=timeout)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()


def check_lock_status(lock_file: Path) -> Optional[dict]:
    """Return lock info if a live process holds the lock, else None."""
    lock_path = Path(lock_file)
    if not lock_path.exists():
        return None

    with open(lock_path) as f:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            info = read_lock_info(lock_path)
            info["lock_file"] = str(lock_path)
            return info
        # Stale file left behind by a crashed run
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    return None


def ensure_unlocked(lock_file: Path, mock: bool = False) -> None:
    """Fail before any prompt when a live deploy already holds the lock."""
    if mock:
        return
    info = check_lock_status(lock_file)
    if info:
        raise LockError(held_message(info), hint=held_hint(lock_file))
