"""
Backup executor - orchestrates the complete backup workflow.

Workflow:
1. Create local tier directories
2. Start hot backup on the source (pg_backup_start / pg_start_backup)
3. Find the data directory and archive it into the daily tier
4. Stop hot backup (always, even if step 3 failed)
5. Promote the archive to weekly/monthly/yearly tiers
6. Enforce local daily retention
7. Replicate to remote targets and enforce their retention
"""

import os
import logging
from datetime import datetime
from typing import Optional, Callable

from pgbackup.config import BackupConfig
from pgbackup.models import BackupRun, TIERS
from .sources import create_source
from .session import BackupSession, SessionError
from .compression import create_archive, generate_archive_filename, get_archive_size, format_size, CompressionError
from .storage import LocalStorage, StorageError
from .tiers import promote_archive
from .retention import RetentionManager
from .replication import ReplicationManager


logger = logging.getLogger(__name__)


class BackupExecutor:
    """
    Orchestrates one backup run for a resolved configuration.
    """

    def __init__(self, config: BackupConfig, source_factory: Callable = create_source):
        """
        Initialize backup executor.

        Args:
            config: Resolved run configuration
            source_factory: Builds the source from config.dsn
        """
        self.config = config
        self.source_factory = source_factory
        self.run: Optional[BackupRun] = None
        self.storage = LocalStorage(config.cluster_dir)
        self.logs = []

    def execute(self) -> BackupRun:
        """
        Execute the backup run.

        Returns:
            BackupRun record; status is 'failed' when no archive was
            produced

        Raises:
            StorageError: If local tier directories cannot be created
            SessionError: If the backup cannot start or the data
                directory cannot be determined
        """
        self.run = BackupRun(status='running', started_at=datetime.now())
        self._log(f"Starting backup of {self.config.hostname} into {self.config.cluster_dir}")

        try:
            self._execute_workflow()
        except (StorageError, SessionError) as e:
            self.run.status = 'failed'
            self.run.error_message = str(e)
            self._log(f"Backup aborted: {e}", logging.ERROR)
            raise
        finally:
            if self.run.status == 'running':
                self.run.status = 'failed'
                self.run.error_message = self.run.error_message or 'Backup interrupted by an unexpected error'
            self.run.completed_at = datetime.now()
            self.run.logs = list(self.logs)

        return self.run

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        # Step 1: Local layout
        self.storage.ensure_tiers(TIERS)

        # Steps 2-4: Bracketed archive
        archive_path = self._run_session()
        if archive_path is None:
            self.run.status = 'failed'
            self._log("No archive produced, skipping rotation and replication", logging.WARNING)
            return

        self.run.archive_path = archive_path
        try:
            self.run.file_size_bytes = get_archive_size(archive_path)
            self._log(f"Archive size: {format_size(self.run.file_size_bytes)}")
        except CompressionError as e:
            self._log(f"Cannot read archive size: {e}", logging.WARNING)

        # Step 5: Tier promotion
        self.run.promoted_tiers = promote_archive(archive_path, self.run.started_at.date(), self.storage)

        # Step 6: Local retention (daily tier only)
        policy = self.config.retention
        self._log(f"Local retention: {policy.describe()}")
        self.run.local_deleted = RetentionManager(self.storage).enforce(
            self.storage.tier_path('daily'), policy
        )

        # Step 7: Remote targets
        if self.config.targets:
            self.run.replication = ReplicationManager(policy).replicate(
                archive_path,
                self.config.relative_path(archive_path),
                self.config.targets
            )
        else:
            self._log("No remote targets configured, skipping replication")

        self.run.status = 'success'
        self._log("Backup completed successfully")

    def _run_session(self) -> Optional[str]:
        """
        Start the session, archive the data directory, stop the session.

        Returns:
            Archive path, or None if archiving failed

        Raises:
            SessionError: If start or data directory lookup fails
        """
        source = self.source_factory(self.config.dsn)
        session = BackupSession(source)
        try:
            self.run.lsn = session.start()
            try:
                data_dir = session.discover_data_directory()
                self.run.data_directory = data_dir
                archive_path = self._create_archive(data_dir)
                if archive_path:
                    session.mark_archived()
                return archive_path
            finally:
                if not session.stop():
                    self._log("Backup session was not stopped cleanly", logging.ERROR)
        finally:
            source.close()

    def _create_archive(self, data_dir: str) -> Optional[str]:
        filename = generate_archive_filename(self.run.started_at)
        archive_path = os.path.join(self.storage.tier_path('daily'), filename)

        self._log(f"Archiving {data_dir} -> {archive_path}")
        try:
            return create_archive(data_dir, archive_path)
        except CompressionError as e:
            self._log(f"Archive error: {e}", logging.ERROR)
            return None

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp and forward it to the logger.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)}: {message}")
        logger.log(level, message)
