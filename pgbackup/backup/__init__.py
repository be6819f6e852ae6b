"""
Backup module for pgbackup.

This module handles the core backup functionality including:
- Hot backup session bracketing
- Compression
- Storage (local tiers, FTP and SFTP targets)
- Tier promotion and retention policy enforcement
- Replication and execution orchestration
"""

from .executor import BackupExecutor
from .session import BackupSession
from .compression import create_archive
from .storage import LocalStorage, FTPStorage, SFTPStorage
from .retention import RetentionManager
from .replication import ReplicationManager

__all__ = [
    'BackupExecutor',
    'BackupSession',
    'create_archive',
    'LocalStorage',
    'FTPStorage',
    'SFTPStorage',
    'RetentionManager',
    'ReplicationManager'
]
