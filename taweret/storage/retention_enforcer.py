"""
Retention limit enforcement.

Deletes the oldest in-use backups of a schedule until the schedule is back
within its retention count, then re-reads the resource store so the caller
sees the post-deletion state.
"""

from datetime import datetime
from typing import Callable, List, Optional

import structlog

from taweret.connectors.base import RecordLister
from .retention_classifier import classify, sort_by_creation
from .retention_deletion import DeletionProtocol
from .retention_models import (
    BackupCounts, ClassifiedSet, DeletionResult, EnforcementResult, RetentionConfig,
)

logger = structlog.get_logger(__name__)


def excess_count(classified: ClassifiedSet, config: RetentionConfig) -> int:
    """Number of in-use backups above the retention limit."""
    return max(len(classified) - config.max_backups, 0)


def select_deletion_candidates(classified: ClassifiedSet, config: RetentionConfig) -> ClassifiedSet:
    """The oldest in-use backups that exceed the retention limit."""
    return sort_by_creation(classified)[:excess_count(classified, config)]


class RetentionEnforcer:
    """Applies a schedule's retention count to its classified backups."""

    def __init__(self, deleter: DeletionProtocol, lister: RecordLister,
                 dry_run: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        self.deleter = deleter
        self.lister = lister
        self.dry_run = dry_run
        self._clock = clock

    async def enforce(self, classified: ClassifiedSet, counts: BackupCounts,
                      config: RetentionConfig) -> EnforcementResult:
        """
        Delete backups over the retention limit, oldest first.

        Deletions run one at a time and the first failure propagates, leaving
        the remaining candidates for the next evaluation.

        Args:
            classified: In-use backups of the schedule
            counts: Counts of the schedule's other backups
            config: Retention config of the schedule

        Returns:
            EnforcementResult re-classified from a fresh listing when anything
            was deleted, otherwise the input unchanged.
        """
        log = logger.bind(schedule=config.name)
        candidates = select_deletion_candidates(classified, config)
        if not candidates:
            return EnforcementResult(classified, counts, [])

        if self.dry_run:
            for backup in candidates:
                log.info("Dry run: would delete backup",
                         backup=backup.name,
                         created_at=backup.created_at.isoformat())
            return EnforcementResult(classified, counts, [])

        deletions: List[DeletionResult] = []
        for number, backup in enumerate(candidates, start=1):
            log.info("Deleting backup",
                     backup=backup.name,
                     created_at=backup.created_at.isoformat(),
                     deletion=number,
                     total_to_delete=len(candidates),
                     in_use=len(classified))
            deletions.append(await self.deleter.delete(backup, config))

        records = await self.lister.list_backups(config.namespace)
        now = self._clock() if self._clock else None
        fresh_classified, fresh_counts = classify(records, config, now)
        return EnforcementResult(fresh_classified, fresh_counts, deletions)
