from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


TIERS = ('daily', 'weekly', 'monthly', 'yearly')

DEFAULT_KEEP_FACTOR = 4

DEFAULT_PORTS = {
    'ftp': 21,
    'sftp': 22
}


class SessionState(Enum):
    """Hot backup session states"""
    IDLE = 'idle'
    STARTED = 'started'
    ARCHIVED = 'archived'
    STOPPED = 'stopped'
    FAILED = 'failed'


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Retention rule for a daily tier directory.

    Count-based when copies > 0, otherwise age-based. An age-based policy
    with days == 0 never deletes anything.
    """
    copies: int = 0
    days: int = 30

    @property
    def is_count_based(self) -> bool:
        return self.copies > 0

    @property
    def is_noop(self) -> bool:
        return not self.is_count_based and self.days <= 0

    def amplified(self, factor: int) -> 'RetentionPolicy':
        """Remote retention window: both quantities multiplied by factor."""
        return RetentionPolicy(copies=self.copies * factor, days=self.days * factor)

    def describe(self) -> str:
        if self.is_count_based:
            return f"keep newest {self.copies}"
        if self.is_noop:
            return "keep forever"
        return f"keep {self.days} days"


@dataclass(frozen=True)
class RemoteTarget:
    """Remote storage destination"""
    host: str
    user: str
    password: str = field(repr=False)
    keep_factor: int = DEFAULT_KEEP_FACTOR
    protocol: str = 'ftp'  # 'ftp' or 'sftp'
    port: Optional[int] = None
    root: str = '/'

    @property
    def effective_port(self) -> int:
        return self.port or DEFAULT_PORTS.get(self.protocol, 21)

    def __str__(self):
        return f"{self.protocol}://{self.user}@{self.host}:{self.effective_port}"


@dataclass
class BackupRun:
    """Execution record of one backup run"""
    status: str = 'running'  # running, success, failed
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    lsn: Optional[str] = None
    data_directory: Optional[str] = None
    archive_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    promoted_tiers: List[str] = field(default_factory=list)
    local_deleted: int = 0
    replication: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)

    def __repr__(self):
        return f'<BackupRun status={self.status} archive={self.archive_path}>'
