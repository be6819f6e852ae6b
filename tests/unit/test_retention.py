"""
Unit tests for retention policy management (pgbackup/backup/retention.py).

Tests RetentionManager for cleaning up old backups.
"""

import os
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time

from pgbackup.backup.retention import RetentionManager
from pgbackup.backup.storage import LocalStorage, StorageError
from pgbackup.models import RetentionPolicy


@pytest.fixture
def daily_dir(tmp_path):
    path = tmp_path / 'daily'
    path.mkdir()
    return path


@pytest.fixture
def manager(tmp_path):
    return RetentionManager(LocalStorage(str(tmp_path)))


class TestRetentionPolicy:
    """Test policy selection and amplification."""

    def test_count_based_takes_precedence(self):
        policy = RetentionPolicy(copies=3, days=30)

        assert policy.is_count_based is True
        assert policy.is_noop is False

    def test_age_based_when_copies_zero(self):
        policy = RetentionPolicy(copies=0, days=30)

        assert policy.is_count_based is False
        assert policy.is_noop is False

    def test_zero_days_never_deletes(self):
        assert RetentionPolicy(copies=0, days=0).is_noop is True

    @pytest.mark.parametrize('factor', [4, 7])
    def test_amplified(self, factor):
        assert RetentionPolicy(copies=2, days=0).amplified(factor).copies == 2 * factor
        assert RetentionPolicy(copies=0, days=30).amplified(factor).days == 30 * factor


class TestCountBasedRetention:
    """Test keep-newest-N retention."""

    def test_keeps_newest_copies(self, manager, daily_dir, archive_factory):
        base = datetime(2024, 1, 1, 2, 0, 0)
        paths = [archive_factory(daily_dir, base + timedelta(days=i)) for i in range(5)]

        deleted = manager.enforce(str(daily_dir), RetentionPolicy(copies=2))

        assert deleted == 3
        assert sorted(os.listdir(daily_dir)) == sorted(os.path.basename(p) for p in paths[-2:])

    def test_fewer_files_than_copies(self, manager, daily_dir, archive_factory):
        archive_factory(daily_dir, datetime(2024, 1, 1))

        assert manager.enforce(str(daily_dir), RetentionPolicy(copies=3)) == 0
        assert len(os.listdir(daily_dir)) == 1

    def test_is_idempotent(self, manager, daily_dir, archive_factory):
        for i in range(4):
            archive_factory(daily_dir, datetime(2024, 1, 1 + i))

        assert manager.enforce(str(daily_dir), RetentionPolicy(copies=2)) == 2
        assert manager.enforce(str(daily_dir), RetentionPolicy(copies=2)) == 0
        assert len(os.listdir(daily_dir)) == 2

    def test_uses_mtime_for_local_files(self, manager, daily_dir, archive_factory):
        # Filename says older, mtime says newer: mtime wins locally
        renamed = archive_factory(daily_dir, datetime(2024, 1, 1))
        newer_mtime = datetime(2024, 2, 1).timestamp()
        os.utime(renamed, (newer_mtime, newer_mtime))
        archive_factory(daily_dir, datetime(2024, 1, 15))

        manager.enforce(str(daily_dir), RetentionPolicy(copies=1))

        assert os.listdir(daily_dir) == [os.path.basename(renamed)]

    def test_ignores_foreign_files(self, manager, daily_dir, archive_factory):
        for i in range(3):
            archive_factory(daily_dir, datetime(2024, 1, 1 + i))
        (daily_dir / 'README.txt').write_text('keep me')

        manager.enforce(str(daily_dir), RetentionPolicy(copies=1))

        assert 'README.txt' in os.listdir(daily_dir)
        assert len(os.listdir(daily_dir)) == 2


class TestAgeBasedRetention:
    """Test delete-older-than-D-days retention."""

    @freeze_time('2024-01-31 12:00:00')
    def test_deletes_only_older_than_cutoff(self, manager, daily_dir, archive_factory):
        old = archive_factory(daily_dir, datetime(2024, 1, 20, 11, 59, 59))
        at_cutoff = archive_factory(daily_dir, datetime(2024, 1, 21, 12, 0, 0))
        recent = archive_factory(daily_dir, datetime(2024, 1, 30))

        deleted = manager.enforce(str(daily_dir), RetentionPolicy(copies=0, days=10))

        assert deleted == 1
        assert not os.path.exists(old)
        assert os.path.exists(at_cutoff)
        assert os.path.exists(recent)

    @freeze_time('2024-01-31')
    def test_zero_days_is_noop(self, manager, daily_dir, archive_factory):
        archive_factory(daily_dir, datetime(2000, 1, 1))
        before = sorted(os.listdir(daily_dir))

        assert manager.enforce(str(daily_dir), RetentionPolicy(copies=0, days=0)) == 0
        assert sorted(os.listdir(daily_dir)) == before


class TestRetentionErrors:
    """Test best-effort behaviour."""

    def test_failed_delete_does_not_stop_others(self):
        storage = MagicMock()
        storage.list_archives.return_value = [
            {'name': f'2024-01-0{i}_00-00-00_cluster.tar.gz',
             'path': f'/d/2024-01-0{i}_00-00-00_cluster.tar.gz',
             'modified': datetime(2024, 1, i)}
            for i in range(1, 5)
        ]
        storage.delete.side_effect = [StorageError('busy'), None, None]

        deleted = RetentionManager(storage, label='ftp1').enforce('/d', RetentionPolicy(copies=1))

        assert deleted == 2
        assert storage.delete.call_count == 3

    def test_listing_failure_returns_zero(self, caplog):
        storage = MagicMock()
        storage.list_archives.side_effect = StorageError('550 no such directory')

        assert RetentionManager(storage).enforce('/d', RetentionPolicy(copies=1)) == 0
        assert '550 no such directory' in caplog.text

    def test_noop_policy_does_not_list(self):
        storage = MagicMock()

        RetentionManager(storage).enforce('/d', RetentionPolicy(copies=0, days=0))

        storage.list_archives.assert_not_called()

    def test_missing_local_directory(self, manager, tmp_path):
        assert manager.enforce(str(tmp_path / 'missing'), RetentionPolicy(copies=1)) == 0
