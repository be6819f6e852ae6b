"""
Retention policy enforcement for backups.

Prunes archives in a single directory, local or remote, with either a
count-based or an age-based policy. Only the daily tier is pruned;
weekly, monthly and yearly copies accumulate.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Dict, Any

from pgbackup.models import RetentionPolicy
from .compression import is_archive_name
from .storage import StorageError


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages retention policy enforcement for one storage backend.

    The storage must provide list_archives(directory) and delete(path);
    LocalStorage, FTPStorage and SFTPStorage all do.
    """

    def __init__(self, storage, label: str = 'local'):
        """
        Initialize retention manager.

        Args:
            storage: Backend holding the archives
            label: Name used in log lines (e.g. the remote host)
        """
        self.storage = storage
        self.label = label

    def enforce(self, directory: str, policy: RetentionPolicy) -> int:
        """
        Apply a retention policy to a directory.

        Args:
            directory: Directory (or remote path) to prune
            policy: Count-based when policy.copies > 0, else age-based

        Returns:
            Number of archives deleted
        """
        if policy.is_noop:
            logger.debug(f"({self.label}) Retention disabled for {directory}")
            return 0

        try:
            files = [
                f for f in self.storage.list_archives(directory)
                if is_archive_name(f['name'])
            ]
        except StorageError as e:
            logger.error(f"({self.label}) Failed to list archives: {e}")
            return 0

        if policy.is_count_based:
            to_delete = self.select_extra_copies(files, policy.copies)
            reason = 'extra'
        else:
            to_delete = self.select_expired(files, policy.days)
            reason = 'old'

        deleted_count = 0
        for file_info in to_delete:
            try:
                self.storage.delete(file_info['path'])
                deleted_count += 1
                logger.info(f"({self.label}) Deleted {reason} archive {file_info['path']}")
            except StorageError as e:
                logger.error(f"({self.label}) Failed to delete {file_info['path']}: {e}")

        return deleted_count

    @staticmethod
    def select_extra_copies(files: List[Dict[str, Any]], copies: int) -> List[Dict[str, Any]]:
        """All but the newest `copies` archives."""
        if len(files) <= copies:
            return []
        ordered = sorted(files, key=lambda f: (f['modified'], f['name']), reverse=True)
        return ordered[copies:]

    @staticmethod
    def select_expired(files: List[Dict[str, Any]], days: int) -> List[Dict[str, Any]]:
        """Archives strictly older than now - days."""
        cutoff = datetime.now() - timedelta(days=days)
        return [f for f in files if f['modified'] < cutoff]
