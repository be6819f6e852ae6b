"""
Hot backup session bracketing.

The session tells the source cluster a base backup is in progress, finds
its data directory, and ends backup mode again. Start and stop try an
ordered list of candidate calls so the same code works before and after
the PostgreSQL 15 rename (pg_start_backup -> pg_backup_start).

State flow:
    IDLE -> STARTED -> ARCHIVED -> STOPPED
                    `-> archive failed -> STOPPED
    any stop failure -> FAILED
"""

import logging
from typing import Optional, List, Tuple

from pgbackup.models import SessionState
from .sources import SourceError


logger = logging.getLogger(__name__)

BACKUP_LABEL = 'pgbackup'

# (name, statement) in the order they are tried
START_CANDIDATES: List[Tuple[str, str]] = [
    ('pg_backup_start', "SELECT pg_backup_start(:label, true)"),
    ('pg_start_backup', "SELECT pg_start_backup(:label, true)"),
]

STOP_CANDIDATES: List[Tuple[str, str]] = [
    ('pg_backup_stop', "SELECT lsn FROM pg_backup_stop(false)"),
    ('pg_stop_backup', "SELECT pg_stop_backup()"),
]

DATA_DIRECTORY_QUERY = "SHOW data_directory"


class SessionError(Exception):
    """Base class for fatal backup session errors."""
    pass


class BackupStartError(SessionError):
    """Raised when no start candidate is accepted by the source."""
    pass


class DataDirectoryError(SessionError):
    """Raised when the source's data directory cannot be determined."""
    pass


class BackupSession:
    """
    One hot backup session against a source.

    The source needs query_scalar(sql, params) and close(); see
    PostgresSource.
    """

    def __init__(self, source, label: str = BACKUP_LABEL):
        self.source = source
        self.label = label
        self.state = SessionState.IDLE
        self.start_lsn: Optional[str] = None
        self.data_directory: Optional[str] = None

    def start(self) -> str:
        """
        Put the source into backup mode.

        Returns:
            Start LSN reported by the source

        Raises:
            BackupStartError: If every start candidate fails
        """
        if self.state is not SessionState.IDLE:
            raise BackupStartError(f"Session already {self.state.value}")

        errors = []
        for name, statement in START_CANDIDATES:
            try:
                lsn = self.source.query_scalar(statement, {'label': self.label})
            except SourceError as e:
                logger.debug(f"{name} rejected: {e}")
                errors.append(f"{name}: {e}")
                continue

            self.start_lsn = str(lsn)
            self.state = SessionState.STARTED
            logger.info(f"Backup started at LSN {self.start_lsn} (via {name})")
            return self.start_lsn

        raise BackupStartError("Cannot start backup: " + "; ".join(errors))

    def discover_data_directory(self) -> str:
        """
        Ask the source for its configured data directory.

        Raises:
            DataDirectoryError: If the lookup fails or returns nothing
        """
        try:
            data_directory = self.source.query_scalar(DATA_DIRECTORY_QUERY)
        except SourceError as e:
            raise DataDirectoryError(f"Cannot determine data_directory: {e}")

        if not data_directory:
            raise DataDirectoryError("Cannot determine data_directory: empty result")

        self.data_directory = str(data_directory)
        logger.info(f"Data directory: {self.data_directory}")
        return self.data_directory

    def mark_archived(self):
        if self.state is SessionState.STARTED:
            self.state = SessionState.ARCHIVED

    def stop(self) -> bool:
        """
        End backup mode, trying each stop candidate once.

        A failure is logged but not raised: the run is about to finish and
        retrying could hang it.

        Returns:
            True if a stop candidate succeeded
        """
        if self.state not in (SessionState.STARTED, SessionState.ARCHIVED):
            logger.debug(f"Stop skipped, session is {self.state.value}")
            return self.state is SessionState.STOPPED

        errors = []
        for name, statement in STOP_CANDIDATES:
            try:
                self.source.query_scalar(statement)
            except SourceError as e:
                logger.warning(f"{name} failed: {e}")
                errors.append(f"{name}: {e}")
                continue

            self.state = SessionState.STOPPED
            logger.info(f"Backup finished (via {name})")
            return True

        self.state = SessionState.FAILED
        logger.error(
            "FAILED TO STOP BACKUP: the cluster may still be in backup mode "
            "and keep accumulating WAL. Run pg_backup_stop() manually. "
            + "; ".join(errors)
        )
        return False
