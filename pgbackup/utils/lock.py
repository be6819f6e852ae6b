"""
Process-exclusion lock for backup runs.

A lock file at a well-known path holds the decimal PID of the owning
process. A lock whose owner is no longer alive is stale and is reclaimed.
"""

import os
import signal
import logging
from typing import Optional


logger = logging.getLogger(__name__)


class LockError(Exception):
    """Raised when the backup lock cannot be acquired."""
    pass


def is_process_alive(pid: int) -> bool:
    """
    Probe a process with signal 0.

    Args:
        pid: Process ID to check

    Returns:
        True if the process exists (even if owned by another user)
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False


class ConcurrencyGuard:
    """
    Exclusive lock around a whole backup run.

    Usage:
        with ConcurrencyGuard('/tmp/postgresql_backup.lock') as guard:
            guard.install_signal_handlers()
            ...
    """

    def __init__(self, lock_path: str):
        """
        Initialize the guard.

        Args:
            lock_path: Filesystem path of the lock file
        """
        self.lock_path = lock_path
        self.acquired = False

    def acquire(self):
        """
        Acquire the lock, reclaiming it if its owner is dead.

        Raises:
            LockError: If a live process holds the lock, or the lock
                file cannot be created
        """
        try:
            self._try_create()
            return
        except FileExistsError:
            pass
        except OSError as e:
            raise LockError(f"Cannot create lock file {self.lock_path}: {e}")

        owner = self.read_owner()
        if owner is not None and is_process_alive(owner):
            raise LockError(f"Backup already running (PID {owner})")

        logger.warning(f"Removing stale lock file {self.lock_path} (PID {owner})")
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LockError(f"Cannot remove stale lock file {self.lock_path}: {e}")

        try:
            self._try_create()
        except OSError as e:
            raise LockError(f"Cannot create lock file {self.lock_path}: {e}")

    def _try_create(self):
        fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        try:
            os.write(fd, str(os.getpid()).encode())
        finally:
            os.close(fd)
        self.acquired = True
        logger.debug(f"Lock acquired: {self.lock_path}")

    def read_owner(self) -> Optional[int]:
        """Return the PID recorded in the lock file, or None if unreadable."""
        try:
            with open(self.lock_path, 'r') as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def release(self):
        """Remove the lock file unconditionally."""
        try:
            os.remove(self.lock_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove lock file {self.lock_path}: {e}")
        self.acquired = False

    def install_signal_handlers(self):
        """Release the lock and exit immediately on SIGINT/SIGTERM."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, frame):
        # No cleanup of partial archives or uploads; the process exits now.
        logger.error(f"Received {signal.Signals(signum).name}, releasing lock and exiting")
        self.release()
        logging.shutdown()
        os._exit(1)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
