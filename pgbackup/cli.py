"""
Command-line interface for pgbackup.

Runs one hot backup of the local PostgreSQL cluster, or lists the daily
archives with --list.
"""

import sys
import logging
from dataclasses import replace

import click

from pgbackup import configure_logging
from pgbackup.config import Config, BackupConfig
from pgbackup.models import RetentionPolicy
from pgbackup.backup.compression import format_size
from pgbackup.backup.executor import BackupExecutor
from pgbackup.backup.session import SessionError
from pgbackup.backup.storage import LocalStorage, StorageError
from pgbackup.backup.targets import resolve_targets, TargetConfigError
from pgbackup.utils.lock import ConcurrencyGuard, LockError


logger = logging.getLogger('pgbackup.cli')


@click.command(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--dsn', default=Config.DSN, show_default=True,
              help='PostgreSQL DSN (SQLAlchemy URL or libpq keyword string).')
@click.option('--backup-path', default=Config.BACKUP_PATH, show_default=True,
              type=click.Path(file_okay=False), help='Root directory for backups.')
@click.option('--days', default=Config.KEEP_DAYS, show_default=True, type=click.IntRange(min=0),
              help='Days to keep local daily backups (0 = forever).')
@click.option('--copies', '-c', default=Config.MAX_COPIES, show_default=True, type=click.IntRange(min=0),
              help='Keep only N newest daily archives (0 = use --days).')
@click.option('--list', 'list_only', is_flag=True, help='List existing daily backups and exit.')
@click.option('--ftp-conf', default=Config.FTP_CONF_FILE, show_default=True,
              help='Remote target credentials file.')
@click.option('--ftp-host', default=None, help='Override target host (replaces the credentials file).')
@click.option('--ftp-user', default=None, help='Override target username.')
@click.option('--ftp-pass', default=None, help='Override target password.')
@click.option('--ftp-keep-factor', default=Config.FTP_KEEP_FACTOR, show_default=True, type=click.IntRange(min=1),
              help='Remote retention multiplier.')
@click.option('--lock-file', default=Config.LOCK_FILE, show_default=True, help='Lock file path.')
@click.option('--log-dir', default=Config.LOG_DIR, help='Also log to a rotating file in this directory.')
@click.option('--debug', is_flag=True, help='Verbose logging.')
def main(dsn, backup_path, days, copies, list_only, ftp_conf, ftp_host, ftp_user, ftp_pass,
         ftp_keep_factor, lock_file, log_dir, debug):
    """Hot physical backup of a local PostgreSQL cluster."""
    configure_logging(log_dir, debug)

    config = BackupConfig(
        backup_path=backup_path,
        dsn=dsn,
        retention=RetentionPolicy(copies=copies, days=days),
        lock_file=lock_file
    )

    if list_only:
        sys.exit(list_backups(config))

    try:
        targets = resolve_targets(ftp_conf, ftp_host, ftp_user, ftp_pass, ftp_keep_factor)
    except TargetConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    config = replace(config, targets=tuple(targets))

    sys.exit(run_backup(config))


def run_backup(config: BackupConfig) -> int:
    """
    Run one backup under the process lock.

    Returns:
        Exit status: 1 on fatal errors, else 0
    """
    guard = ConcurrencyGuard(config.lock_file)
    try:
        guard.acquire()
    except LockError as e:
        logger.error(str(e))
        return 1

    guard.install_signal_handlers()
    try:
        run = BackupExecutor(config).execute()
    except (StorageError, SessionError) as e:
        logger.error(f"Fatal: {e}")
        return 1
    finally:
        guard.release()

    logger.info(f"Run finished with status {run.status}")
    return 0


def list_backups(config: BackupConfig) -> int:
    """Print daily archives, oldest first."""
    storage = LocalStorage(config.cluster_dir)
    daily = storage.tier_path('daily')
    try:
        files = storage.list_archives(daily)
    except StorageError as e:
        logger.error(f"Cannot open {daily}: {e}")
        return 1

    for file_info in sorted(files, key=lambda f: f['name']):
        click.echo(f"{file_info['name']}  {format_size(file_info['size'])}")
    return 0


if __name__ == '__main__':
    main()
