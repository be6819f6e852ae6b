"""
Replication of archives to remote targets.

Targets are processed one after another in configuration order. Each one
gets: connect/login, directory creation, upload and, for daily archives,
retention with the target's amplified policy. A failure on one target is
logged and never stops the others.
"""

import logging
import posixpath
from typing import Dict, Any, Iterable

from pgbackup.models import RemoteTarget, RetentionPolicy
from .retention import RetentionManager
from .storage import create_storage, StorageError


logger = logging.getLogger(__name__)


class ReplicationManager:
    """
    Pushes one archive to every configured remote target.
    """

    def __init__(self, policy: RetentionPolicy):
        """
        Initialize replication manager.

        Args:
            policy: Local daily retention; each target amplifies it by
                its keep factor
        """
        self.policy = policy

    def replicate(self, archive_path: str, relative_path: str, targets: Iterable[RemoteTarget]) -> Dict[str, Any]:
        """
        Upload an archive to each target in turn.

        Args:
            archive_path: Local archive file
            relative_path: Archive path relative to the backup root,
                '/'-separated (mirrored under each target's root)
            targets: Ordered targets

        Returns:
            Dict with summary of replication:
            {
                'targets_processed': int,
                'uploaded': List[str],
                'remote_deleted': int,
                'errors': List[str]
            }
        """
        summary = {
            'targets_processed': 0,
            'uploaded': [],
            'remote_deleted': 0,
            'errors': []
        }

        for target in targets:
            summary['targets_processed'] += 1
            try:
                summary['remote_deleted'] += self.replicate_to_target(target, archive_path, relative_path)
                summary['uploaded'].append(target.host)
            except (StorageError, ValueError) as e:
                error_msg = f"Replication to {target.host} failed: {e}"
                logger.error(error_msg)
                summary['errors'].append(error_msg)

        logger.info(
            f"Replication complete. "
            f"Targets: {summary['targets_processed']}, "
            f"Uploaded: {len(summary['uploaded'])}, "
            f"Remote deleted: {summary['remote_deleted']}, "
            f"Errors: {len(summary['errors'])}"
        )
        return summary

    def replicate_to_target(self, target: RemoteTarget, archive_path: str, relative_path: str) -> int:
        """
        Upload to a single target and prune its daily directory.

        Returns:
            Number of remote archives deleted by retention

        Raises:
            StorageError: If connect, login, mkdir or upload fails
            ValueError: If the target protocol is unknown
        """
        storage = create_storage(target)
        try:
            storage.connect()

            remote_dir = storage.make_dirs(posixpath.dirname(relative_path))
            remote_path = posixpath.join(remote_dir, posixpath.basename(relative_path))

            logger.info(f"Uploading to {target.host}: {remote_path}")
            storage.upload(archive_path, remote_path)

            if posixpath.basename(remote_dir) != 'daily':
                return 0

            remote_policy = self.remote_policy(target)
            logger.info(f"({target.host}) Remote retention: {remote_policy.describe()}")
            return RetentionManager(storage, label=target.host).enforce(remote_dir, remote_policy)
        finally:
            storage.close()

    def remote_policy(self, target: RemoteTarget) -> RetentionPolicy:
        return self.policy.amplified(target.keep_factor)
