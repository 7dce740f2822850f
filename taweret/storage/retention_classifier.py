"""
Backup classification for the retention system.

Splits the backups of one schedule into the in-use set, which counts against
the retention limit, and per-status tallies of everything else.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from operator import attrgetter
from typing import Iterable, List, Optional

from .retention_models import (
    ZERO_TIME, IN_USE_STATUSES, BackupCounts, BackupRecord, Classification,
    RetentionConfig, RetentionSettings,
)


def _subtract_calendar(moment: datetime, years: int, months: int, days: int) -> datetime:
    """
    Move a timestamp back by whole years, months and days.

    Follows date-normalisation rules: months outside 1-12 carry into the year
    and a day that does not exist in the target month rolls forward, so
    31 March minus one month is 3 March.
    """
    month_index = moment.year * 12 + (moment.month - 1) - years * 12 - months
    year, month = divmod(month_index, 12)
    if year < 1:
        raise OverflowError("date value out of range")
    first_of_month = moment.replace(year=year, month=month + 1, day=1)
    return first_of_month + timedelta(days=moment.day - 1 - days)


def compute_cutoff(window: RetentionSettings, now: Optional[datetime] = None) -> datetime:
    """
    Compute the oldest instant a backup may be created at and still be in use.

    Args:
        window: Retention age components.
        now: Reference time, defaults to the current UTC time.

    Returns:
        Cutoff timestamp; ZERO_TIME when the window reaches past year 1.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    try:
        cutoff = now - timedelta(minutes=window.minutes)
        cutoff = cutoff - timedelta(hours=window.hours)
        return _subtract_calendar(cutoff, window.years, window.months, window.days)
    except OverflowError:
        return ZERO_TIME


def sort_by_creation(records: Iterable[BackupRecord]) -> List[BackupRecord]:
    """Sort records oldest first; equal timestamps keep their input order."""
    return sorted(records, key=attrgetter("created_at"))


def classify(records: Iterable[BackupRecord],
             config: RetentionConfig,
             now: Optional[datetime] = None) -> Classification:
    """
    Classify a schedule's backups.

    A record is in use when it was created after the cutoff and finished as
    complete or failed. Other records are tallied by status. Records that
    belong to a different schedule are ignored, so callers may pass either the
    full namespace listing or a pre-filtered one.

    Returns:
        Classification with the in-use records sorted oldest first and the
        counts of the remaining records.
    """
    cutoff = compute_cutoff(config.max_age, now)
    in_use: List[BackupRecord] = []
    counts = BackupCounts()

    for record in records:
        if record.schedule != config.name:
            continue
        if record.created_at > cutoff and record.status in IN_USE_STATUSES:
            in_use.append(replace(record, in_use=True))
        else:
            counts.increment(record.status)

    return Classification(sort_by_creation(in_use), counts)
