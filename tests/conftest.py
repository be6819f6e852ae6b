"""
Shared pytest fixtures for pgbackup tests.

This module provides fixtures for:
- A fake source cluster that answers the backup session calls
- A data directory with known files
- Backup configuration rooted in a temporary directory
- In-memory remote targets standing in for FTP/SFTP servers
"""

import os
import posixpath
from datetime import datetime
from unittest.mock import patch

import pytest

from pgbackup.config import BackupConfig
from pgbackup.models import RetentionPolicy, RemoteTarget
from pgbackup.backup.compression import parse_archive_timestamp
from pgbackup.backup.sources import SourceError
from pgbackup.backup.storage import StorageError


class FakeSource:
    """
    Source double recording every statement it receives.

    Statements containing any string in `reject` raise SourceError.
    """

    def __init__(self, data_directory='/var/lib/postgresql/data', reject=(), lsn='0/2000028'):
        self.data_directory = data_directory
        self.reject = list(reject)
        self.lsn = lsn
        self.statements = []
        self.closed = False

    def query_scalar(self, sql, params=None):
        self.statements.append(sql)
        for fragment in self.reject:
            if fragment in sql:
                raise SourceError(f"function {fragment} does not exist")
        if sql.startswith('SHOW data_directory'):
            return self.data_directory
        if 'start' in sql:
            return self.lsn
        return '0/3000100'

    def calls(self, fragment):
        return [s for s in self.statements if fragment in s]

    def close(self):
        self.closed = True


class FakeRemoteStorage:
    """
    In-memory remote storage with the FTPStorage interface.

    Files live in `files` as {remote_path: bytes}; the class-level
    `servers` dict keeps state per host across connections.
    """

    servers = {}

    def __init__(self, target, fail_on=None):
        self.target = target
        self.fail_on = fail_on
        self.connected = False
        self.closed = False
        self.files = FakeRemoteStorage.servers.setdefault(target.host, {})

    def _check(self, operation):
        if self.fail_on == operation:
            raise StorageError(f"{operation} failed on {self.target.host}")

    def connect(self):
        self._check('connect')
        self.connected = True

    def make_dirs(self, relative_dir):
        self._check('make_dirs')
        return posixpath.join(self.target.root, relative_dir)

    def upload(self, local_path, remote_path):
        self._check('upload')
        with open(local_path, 'rb') as f:
            self.files[remote_path] = f.read()

    def list_archives(self, directory):
        result = []
        for path in self.files:
            if posixpath.dirname(path) != directory:
                continue
            name = posixpath.basename(path)
            modified = parse_archive_timestamp(name)
            if modified:
                result.append({'name': name, 'path': path, 'modified': modified, 'size': len(self.files[path])})
        return result

    def delete(self, remote_path):
        self._check('delete')
        del self.files[remote_path]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def data_dir(tmp_path):
    """
    Create a small cluster data directory.

    Creates:
    - PG_VERSION (3 bytes)
    - base/1/1259 (8192 bytes)
    - global/pg_control (512 bytes)
    """
    root = tmp_path / 'pgdata'
    (root / 'base' / '1').mkdir(parents=True)
    (root / 'global').mkdir()

    (root / 'PG_VERSION').write_bytes(b'16\n')
    (root / 'base' / '1' / '1259').write_bytes(b'\x01' * 8192)
    (root / 'global' / 'pg_control').write_bytes(b'\x02' * 512)
    os.chmod(root / 'global' / 'pg_control', 0o600)

    return root


@pytest.fixture
def backup_config(tmp_path):
    """Configuration rooted in tmp_path with no remote targets."""
    return BackupConfig(
        backup_path=str(tmp_path / 'backup'),
        dsn='host=/var/run/postgresql user=postgres',
        retention=RetentionPolicy(copies=0, days=30),
        lock_file=str(tmp_path / 'postgresql_backup.lock'),
        hostname='dbhost'
    )


@pytest.fixture
def remote_targets():
    return (
        RemoteTarget(host='ftp1.example.com', user='pg', password='secret1'),
        RemoteTarget(host='ftp2.example.com', user='pg', password='secret2', keep_factor=2),
    )


@pytest.fixture
def fake_remote():
    """
    Replace remote storage creation with in-memory servers.

    Yields the per-host file dicts; set `failures[host] = operation` to
    make a target fail at that step.
    """
    FakeRemoteStorage.servers = {}
    failures = {}

    def factory(target):
        return FakeRemoteStorage(target, fail_on=failures.get(target.host))

    with patch('pgbackup.backup.replication.create_storage', side_effect=factory):
        yield FakeRemoteStorage.servers, failures

    FakeRemoteStorage.servers = {}


def make_archive_file(directory, timestamp: datetime, content=b'archive'):
    """Write a fake archive named for timestamp, with mtime = timestamp."""
    path = os.path.join(str(directory), timestamp.strftime('%Y-%m-%d_%H-%M-%S') + '_cluster.tar.gz')
    with open(path, 'wb') as f:
        f.write(content)
    epoch = timestamp.timestamp()
    os.utime(path, (epoch, epoch))
    return path


@pytest.fixture
def archive_factory():
    """Function writing dated archive files; see make_archive_file."""
    return make_archive_file


@pytest.fixture
def source_class():
    """The FakeSource class, for tests needing custom rejections."""
    return FakeSource
