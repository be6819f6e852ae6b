"""
Remote target resolution.

Targets come from a credentials file made of KEY=VALUE blocks, e.g.:

    # primary
    FTP_HOST=backup1.example.com
    FTP_USER=pg
    FTP_PASS=secret

    FTP_HOST=backup2.example.com
    FTP_USER=pg
    FTP_PASS=secret2
    FTP_PROTOCOL=sftp
    FTP_KEEP_FACTOR=8

FTP_HOST starts a new block. A single override record given on the
command line replaces the whole list.
"""

import os
import logging
from typing import List, Optional, Dict

from pgbackup.models import RemoteTarget, DEFAULT_KEEP_FACTOR, DEFAULT_PORTS


logger = logging.getLogger(__name__)


class TargetConfigError(Exception):
    """Raised when the credentials file cannot be read."""
    pass


def _build_target(block: Dict[str, str], keep_factor: int) -> Optional[RemoteTarget]:
    host = block.get('FTP_HOST', '')
    user = block.get('FTP_USER', '')
    password = block.get('FTP_PASS', '')
    if not (host and user and password):
        if block:
            logger.warning(f"Ignoring incomplete target block (host={host or '?'})")
        return None

    protocol = block.get('FTP_PROTOCOL', 'ftp').lower()
    if protocol not in DEFAULT_PORTS:
        logger.warning(f"Ignoring target {host}: unknown protocol {protocol}")
        return None

    try:
        port = int(block['FTP_PORT']) if block.get('FTP_PORT') else None
        factor = int(block['FTP_KEEP_FACTOR']) if block.get('FTP_KEEP_FACTOR') else keep_factor
    except ValueError as e:
        logger.warning(f"Ignoring target {host}: {e}")
        return None

    return RemoteTarget(
        host=host,
        user=user,
        password=password,
        keep_factor=factor,
        protocol=protocol,
        port=port,
        root=block.get('FTP_ROOT') or '/'
    )


def parse_targets_file(path: str, keep_factor: int = DEFAULT_KEEP_FACTOR) -> List[RemoteTarget]:
    """
    Parse a credentials file into targets, in file order.

    Args:
        path: Credentials file
        keep_factor: Factor for blocks that don't set FTP_KEEP_FACTOR

    Returns:
        Complete targets; incomplete blocks are dropped

    Raises:
        TargetConfigError: If the file cannot be read
    """
    targets = []
    block: Dict[str, str] = {}

    def commit():
        target = _build_target(block, keep_factor)
        if target:
            targets.append(target)
        block.clear()

    try:
        with open(path, 'r') as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith('#') or '=' not in line:
                    continue
                key, value = line.split('=', 1)
                key = key.strip()
                value = value.strip()
                if key == 'FTP_HOST' and block.get('FTP_HOST'):
                    commit()
                block[key] = value
    except OSError as e:
        raise TargetConfigError(f"Cannot read {path}: {e}")

    commit()
    return targets


def resolve_targets(
    conf_file: Optional[str] = None,
    host: Optional[str] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    keep_factor: int = DEFAULT_KEEP_FACTOR
) -> List[RemoteTarget]:
    """
    Resolve the ordered target list for a run.

    The credentials file is read if it exists; a host override replaces
    its targets entirely rather than appending.

    Raises:
        TargetConfigError: If an existing credentials file cannot be read
    """
    targets = []
    if conf_file and os.path.exists(conf_file):
        targets = parse_targets_file(conf_file, keep_factor)

    if host:
        targets = [RemoteTarget(
            host=host,
            user=user or '',
            password=password or '',
            keep_factor=keep_factor
        )]

    for target in targets:
        logger.info(f"Remote target -> {target.host} (user {target.user}, {target.protocol})")

    return targets
