import os
import socket
from dataclasses import dataclass, field
from typing import Tuple

from pgbackup.models import RetentionPolicy, RemoteTarget


PRODUCT_DIR = 'postgresql-backup'


class Config:
    """Base configuration, read from the environment"""

    # Local storage
    BACKUP_PATH = os.environ.get('PGBACKUP_PATH') or '/backup'
    KEEP_DAYS = int(os.environ.get('PGBACKUP_DAYS') or 30)
    MAX_COPIES = int(os.environ.get('PGBACKUP_COPIES') or 0)

    # PostgreSQL (SQLAlchemy URL or libpq keyword string)
    DSN = os.environ.get('PGBACKUP_DSN') or 'host=/var/run/postgresql user=postgres sslmode=disable'

    # Remote targets
    FTP_CONF_FILE = os.environ.get('PGBACKUP_FTP_CONF') or '/etc/ftp-backup.conf'
    FTP_KEEP_FACTOR = int(os.environ.get('PGBACKUP_FTP_KEEP_FACTOR') or 4)

    # Process
    LOCK_FILE = os.environ.get('PGBACKUP_LOCK_FILE') or '/tmp/postgresql_backup.lock'
    LOG_DIR = os.environ.get('PGBACKUP_LOG_DIR') or ''


@dataclass(frozen=True)
class BackupConfig:
    """
    Resolved, immutable settings for a single backup run.

    Built once at startup and passed to every component instead of
    process-wide globals.
    """
    backup_path: str = Config.BACKUP_PATH
    dsn: str = Config.DSN
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    targets: Tuple[RemoteTarget, ...] = ()
    lock_file: str = Config.LOCK_FILE
    hostname: str = field(default_factory=socket.gethostname)

    @property
    def cluster_dir(self) -> str:
        """<backup-root>/<hostname>/postgresql-backup/cluster"""
        return os.path.join(self.backup_path, self.hostname, PRODUCT_DIR, 'cluster')

    def tier_dir(self, tier: str) -> str:
        return os.path.join(self.cluster_dir, tier)

    def relative_path(self, path: str) -> str:
        """Path of a local archive relative to the backup root, '/'-separated."""
        rel = os.path.relpath(path, self.backup_path)
        return rel.replace(os.sep, '/')
