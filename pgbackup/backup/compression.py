"""
Archive creation for cluster backups.

The data directory is written as a gzip-compressed tar stream with one
entry per regular file. Ownership, permission bits and modification times
come from the filesystem; directories are implied by member paths.
"""

import os
import re
import stat
import tarfile
import logging
from datetime import datetime
from typing import Optional


logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = 'tar.gz'
ARCHIVE_SUFFIX = f'_cluster.{ARCHIVE_EXTENSION}'
TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'

ARCHIVE_NAME_PATTERN = re.compile(
    r'^(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})_cluster\.tar\.gz$'
)


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_archive(source_dir: str, archive_path: str) -> str:
    """
    Create a tar.gz archive of a directory tree.

    Args:
        source_dir: Directory to archive (e.g. the cluster data directory)
        archive_path: Full path of the archive to write

    Returns:
        archive_path, once the archive is complete and synced to disk

    Raises:
        CompressionError: If traversal or writing fails. A partial archive
            is removed before raising.
    """
    if not os.path.isdir(source_dir):
        raise CompressionError(f"Source directory does not exist: {source_dir}")

    try:
        with open(archive_path, 'wb') as out:
            with tarfile.open(fileobj=out, mode='w:gz') as tar:
                count = _add_tree(tar, source_dir)
            out.flush()
            os.fsync(out.fileno())
    except (OSError, tarfile.TarError) as e:
        _remove_partial(archive_path)
        raise CompressionError(f"Failed to create archive: {e}")

    logger.debug(f"Archived {count} files from {source_dir}")
    return archive_path


def _walk_error(error: OSError):
    raise error


def _add_tree(tar: tarfile.TarFile, source_dir: str) -> int:
    """
    Add every regular file under source_dir with a path relative to it.

    Returns:
        Number of files written
    """
    count = 0
    for dirpath, dirnames, filenames in os.walk(source_dir, onerror=_walk_error):
        for name in filenames:
            path = os.path.join(dirpath, name)
            arcname = os.path.relpath(path, source_dir)

            if not stat.S_ISREG(os.lstat(path).st_mode):
                logger.debug(f"Skipping non-regular file: {arcname}")
                continue

            with open(path, 'rb') as f:
                info = tar.gettarinfo(arcname=arcname, fileobj=f)
                tar.addfile(info, f)
            count += 1
    return count


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError as e:
            logger.warning(f"Failed to remove partial archive {archive_path}: {e}")


def generate_archive_filename(timestamp: datetime) -> str:
    """
    Generate the archive filename for a run.

    Format: YYYY-MM-DD_HH-MM-SS_cluster.tar.gz

    Args:
        timestamp: Run start time

    Returns:
        Filename (without path)
    """
    return f"{timestamp.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"


def parse_archive_timestamp(filename: str) -> Optional[datetime]:
    """
    Extract the run timestamp from an archive filename.

    Returns:
        The timestamp, or None if the name is not an archive name
    """
    match = ARCHIVE_NAME_PATTERN.match(os.path.basename(filename))
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def is_archive_name(filename: str) -> bool:
    return parse_archive_timestamp(filename) is not None


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")


def format_size(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.2f} MB"
