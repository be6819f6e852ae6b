"""
Storage handlers for backup archives.

Supports:
- LocalStorage: Tiered directories on the local filesystem
- FTPStorage: Remote target over FTP
- SFTPStorage: Remote target over SSH/SFTP

All handlers list archives as dicts with 'name', 'path', 'modified' and
'size' keys so RetentionManager can work on any of them.
"""

import os
import ftplib
import shutil
import stat
import posixpath
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Dict, Any, Iterable

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from pgbackup.models import RemoteTarget
from .compression import parse_archive_timestamp


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class LocalStorage:
    """
    Handler for the local tier layout:
    {cluster_dir}/{daily,weekly,monthly,yearly}/{filename}
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Cluster directory holding the tier directories
        """
        self.base_path = Path(base_path)

    def ensure_tiers(self, tiers: Iterable[str]):
        """
        Create tier directories (mode 0755) if missing.

        Raises:
            StorageError: If a directory cannot be created
        """
        for tier in tiers:
            path = self.base_path / tier
            try:
                path.mkdir(mode=0o755, parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create directory {path}: {e}")

    def tier_path(self, tier: str) -> str:
        return str(self.base_path / tier)

    def copy_to_tier(self, source_path: str, tier: str) -> str:
        """
        Copy an archive byte-for-byte into a tier directory.

        Returns:
            Full path of the copy

        Raises:
            StorageError: If the copy fails
        """
        dest_path = self.base_path / tier / os.path.basename(source_path)
        try:
            shutil.copy2(source_path, dest_path)
            os.chmod(dest_path, 0o644)
        except OSError as e:
            raise StorageError(f"Failed to copy {source_path} to {tier}: {e}")
        return str(dest_path)

    def list_archives(self, directory: str) -> List[Dict[str, Any]]:
        """
        List archive files in a directory, dated by filesystem mtime.

        Raises:
            StorageError: If the directory cannot be read
        """
        try:
            entries = list(os.scandir(directory))
        except OSError as e:
            raise StorageError(f"Failed to list {directory}: {e}")

        files = []
        for entry in entries:
            if not entry.is_file() or parse_archive_timestamp(entry.name) is None:
                continue
            try:
                st = entry.stat()
            except OSError as e:
                logger.warning(f"Cannot stat {entry.path}: {e}")
                continue
            files.append({
                'name': entry.name,
                'path': entry.path,
                'modified': datetime.fromtimestamp(st.st_mtime),
                'size': st.st_size
            })
        return files

    def delete(self, path: str):
        """
        Delete a file.

        Raises:
            StorageError: If deletion fails
        """
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}")


def _remote_listing(directory: str, names: Iterable[str]) -> List[Dict[str, Any]]:
    """Build archive records for remote names, dated by their filename."""
    files = []
    for name in names:
        name = posixpath.basename(name.rstrip('/'))
        modified = parse_archive_timestamp(name)
        if modified is None:
            continue
        files.append({
            'name': name,
            'path': posixpath.join(directory, name),
            'modified': modified,
            'size': None
        })
    return files


def _directory_chain(root: str, relative_dir: str) -> List[str]:
    """
    Every directory from root down to root/relative_dir.

    >>> _directory_chain('/', 'a/b')
    ['/a', '/a/b']
    """
    chain = []
    current = root or '/'
    for part in relative_dir.split('/'):
        if not part or part == '.':
            continue
        current = posixpath.join(current, part)
        chain.append(current)
    return chain


class FTPStorage:
    """
    Handler for an FTP target.

    No timeouts are set; a hung server blocks until the transport gives up.
    """

    def __init__(self, target: RemoteTarget):
        self.target = target
        self.ftp = None

    def connect(self):
        """
        Open the control connection and log in.

        Raises:
            StorageError: If connecting or authenticating fails
        """
        self.ftp = ftplib.FTP()
        try:
            self.ftp.connect(self.target.host, self.target.effective_port)
        except ftplib.all_errors as e:
            raise StorageError(f"FTP connect {self.target.host} failed: {e}")

        try:
            self.ftp.login(self.target.user, self.target.password)
        except ftplib.all_errors as e:
            raise StorageError(f"FTP login {self.target.host} failed: {e}")

    def make_dirs(self, relative_dir: str) -> str:
        """
        Create each component of relative_dir under the target root.

        Existing directories are not an error.

        Returns:
            Absolute remote directory
        """
        chain = _directory_chain(self.target.root, relative_dir)
        for path in chain:
            try:
                self.ftp.mkd(path)
            except ftplib.error_perm:
                # 550: already exists (or not permitted; upload will tell)
                pass
            except ftplib.all_errors as e:
                raise StorageError(f"FTP mkdir {path} failed: {e}")
        return chain[-1] if chain else (self.target.root or '/')

    def upload(self, local_path: str, remote_path: str):
        """
        Upload a file in binary mode.

        Raises:
            StorageError: If the local file cannot be read or STOR fails
        """
        try:
            with open(local_path, 'rb') as f:
                self.ftp.storbinary(f'STOR {remote_path}', f)
        except ftplib.all_errors as e:
            raise StorageError(f"FTP upload {self.target.host}:{remote_path} failed: {e}")

    def list_archives(self, directory: str) -> List[Dict[str, Any]]:
        try:
            names = self.ftp.nlst(directory)
        except (ftplib.error_perm, ftplib.error_temp) as e:
            # Some servers answer an empty directory with 550 or 450
            if str(e)[:3] in ('550', '450'):
                return []
            raise StorageError(f"FTP list {directory} failed: {e}")
        except ftplib.all_errors as e:
            raise StorageError(f"FTP list {directory} failed: {e}")
        return _remote_listing(directory, names)

    def delete(self, remote_path: str):
        try:
            self.ftp.delete(remote_path)
        except ftplib.all_errors as e:
            raise StorageError(f"FTP delete {remote_path} failed: {e}")

    def close(self):
        """Quit politely, falling back to dropping the connection."""
        if self.ftp is None:
            return
        if self.ftp.sock is None:
            self.ftp.close()
        else:
            try:
                self.ftp.quit()
            except ftplib.all_errors:
                self.ftp.close()
        self.ftp = None


class SFTPStorage:
    """
    Handler for an SFTP target.
    """

    def __init__(self, target: RemoteTarget):
        self.target = target
        self.ssh_client = None
        self.sftp_client = None

    def connect(self):
        """
        Establish SSH connection and open an SFTP channel.

        Raises:
            StorageError: If connection fails
        """
        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())
            self.ssh_client.connect(
                hostname=self.target.host,
                port=self.target.effective_port,
                username=self.target.user,
                password=self.target.password,
                timeout=30
            )
            self.sftp_client = self.ssh_client.open_sftp()

        except paramiko.AuthenticationException as e:
            raise StorageError(f"SSH authentication failed for {self.target.host}: {e}")
        except paramiko.SSHException as e:
            raise StorageError(f"SSH connection to {self.target.host} failed: {e}")
        except (OSError, EOFError) as e:
            raise StorageError(f"Failed to connect to {self.target.host}: {e}")

    def make_dirs(self, relative_dir: str) -> str:
        chain = _directory_chain(self.target.root, relative_dir)
        for path in chain:
            try:
                attrs = self.sftp_client.stat(path)
                if not stat.S_ISDIR(attrs.st_mode):
                    raise StorageError(f"Remote path is not a directory: {path}")
                continue
            except FileNotFoundError:
                pass
            except (OSError, EOFError) as e:
                raise StorageError(f"SFTP stat {path} failed: {e}")

            try:
                self.sftp_client.mkdir(path, mode=0o755)
            except (OSError, EOFError) as e:
                raise StorageError(f"SFTP mkdir {path} failed: {e}")
        return chain[-1] if chain else (self.target.root or '/')

    def upload(self, local_path: str, remote_path: str):
        try:
            self.sftp_client.put(local_path, remote_path)
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise StorageError(f"SFTP upload {self.target.host}:{remote_path} failed: {e}")

    def list_archives(self, directory: str) -> List[Dict[str, Any]]:
        try:
            names = self.sftp_client.listdir(directory)
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise StorageError(f"SFTP list {directory} failed: {e}")
        return _remote_listing(directory, names)

    def delete(self, remote_path: str):
        try:
            self.sftp_client.remove(remote_path)
        except (OSError, EOFError, paramiko.SSHException) as e:
            raise StorageError(f"SFTP delete {remote_path} failed: {e}")

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.debug(f"SFTP close failed: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except (OSError, EOFError, paramiko.SSHException) as e:
                logger.debug(f"SSH close failed: {e}")
            self.ssh_client = None


def create_storage(target: RemoteTarget):
    """
    Factory function to create the storage handler for a target.

    Raises:
        ValueError: If the target protocol is unknown
    """
    if target.protocol == 'ftp':
        return FTPStorage(target)
    elif target.protocol == 'sftp':
        return SFTPStorage(target)
    else:
        raise ValueError(f"Invalid target protocol: {target.protocol}")
