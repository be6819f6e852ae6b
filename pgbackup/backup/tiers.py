"""
Promotion of the daily archive into weekly, monthly and yearly tiers.
"""

import logging
from datetime import date
from typing import List

from .storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)

SUNDAY = 6  # date.weekday()


def promotion_tiers(today: date) -> List[str]:
    """
    Tiers that also receive a copy of today's daily archive.

    Checks are independent: a Sunday January 1st promotes to all three.

    Args:
        today: Date of the run

    Returns:
        Subset of ['weekly', 'monthly', 'yearly'], in that order
    """
    tiers = []
    if today.weekday() == SUNDAY:
        tiers.append('weekly')
    if today.day == 1:
        tiers.append('monthly')
    if today.timetuple().tm_yday == 1:
        tiers.append('yearly')
    return tiers


def promote_archive(archive_path: str, today: date, storage: LocalStorage) -> List[str]:
    """
    Copy an archive into every tier due today.

    Copy failures are logged and skipped.

    Returns:
        Tiers that received a copy
    """
    promoted = []
    for tier in promotion_tiers(today):
        try:
            dest = storage.copy_to_tier(archive_path, tier)
        except StorageError as e:
            logger.error(f"Tier copy failed: {e}")
            continue
        logger.info(f"Promoted to {tier}: {dest}")
        promoted.append(tier)
    return promoted
