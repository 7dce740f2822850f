"""
Main retention manager - orchestrates the retention system.

This is the entry point for an evaluation cycle: it loads the schedule
configs, evaluates each schedule in turn and publishes the resulting metrics.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from taweret.connectors.base import RecordLister
from taweret.monitoring.retention_metrics import MetricsSink, report
from .retention_classifier import classify
from .retention_config import RetentionConfigManager
from .retention_deletion import DeletionProtocol
from .retention_enforcer import RetentionEnforcer, excess_count
from .retention_models import DeletionResult, RetentionConfig

logger = structlog.get_logger(__name__)


@dataclass
class ScheduleEvaluation:
    """Summary of one schedule's evaluation."""
    schedule_name: str
    status: str  # 'success', 'failed'
    in_use_count: int = 0
    counts: Dict[str, int] = field(default_factory=dict)
    deleted: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    error_message: Optional[str] = None


class RetentionManager:
    """
    Main retention manager that evaluates every configured schedule.

    Schedules are evaluated one after another. A failure in one schedule is
    logged and counted, and leaves that schedule's gauges at their previous
    values; the remaining schedules are still evaluated.
    """

    def __init__(self,
                 config_manager: RetentionConfigManager,
                 lister: RecordLister,
                 deleter: DeletionProtocol,
                 metrics: MetricsSink,
                 dry_run: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config_manager = config_manager
        self.lister = lister
        self.metrics = metrics
        self.dry_run = dry_run
        self._clock = clock
        self.enforcer = RetentionEnforcer(deleter, lister, dry_run=dry_run, clock=clock)

    async def run_evaluation(self) -> List[ScheduleEvaluation]:
        """
        Run one evaluation cycle over all schedules.

        Raises:
            ConfigParseError: If the schedule configs cannot be loaded
        """
        logger.info("Starting backup config evaluations", dry_run=self.dry_run)
        configs = await self.config_manager.get_configs()

        results = []
        for config in configs:
            results.append(await self._evaluate_isolated(config))

        failed = [result.schedule_name for result in results if result.status == 'failed']
        logger.info("Backup config evaluations complete",
                    schedules=len(results),
                    failed=failed)
        return results

    async def _evaluate_isolated(self, config: RetentionConfig) -> ScheduleEvaluation:
        started = time.monotonic()
        try:
            return await self.evaluate_schedule(config)
        except Exception as e:
            duration = time.monotonic() - started
            logger.error("Backup evaluation failed",
                         schedule=config.name,
                         error_type=type(e).__name__,
                         error=str(e),
                         backup=getattr(e, "backup_name", None))
            self.metrics.record_evaluation(config.name, duration, [], error=e)
            return ScheduleEvaluation(
                schedule_name=config.name,
                status='failed',
                duration_seconds=duration,
                error_message=str(e),
            )

    async def evaluate_schedule(self, config: RetentionConfig) -> ScheduleEvaluation:
        """
        Evaluate one schedule: classify its backups, enforce the retention
        count and publish its metrics.

        Raises:
            RetentionError: If listing or deleting fails
        """
        log = logger.bind(schedule=config.name)
        started = time.monotonic()
        log.info("Evaluating backups")

        records = await self.lister.list_backups(config.namespace)
        now = self._clock() if self._clock else None
        classified, counts = classify(records, config, now)
        log.info("Backups categorised", in_use=len(classified), **counts.as_dict())

        deletions: List[DeletionResult] = []
        if excess_count(classified, config) > 0:
            classified, counts, deletions = await self.enforcer.enforce(classified, counts, config)
        else:
            log.info("No backups deleted", current=len(classified), limit=config.max_backups)

        self.metrics.publish(report(classified, counts, config.name))
        duration = time.monotonic() - started
        self.metrics.record_evaluation(config.name, duration, deletions)

        log.info("Backup evaluation complete",
                 in_use=len(classified),
                 deleted=len(deletions),
                 duration_seconds=round(duration, 3))
        return ScheduleEvaluation(
            schedule_name=config.name,
            status='success',
            in_use_count=len(classified),
            counts=counts.as_dict(),
            deleted=[deletion.backup_name for deletion in deletions],
            duration_seconds=duration,
        )


def create_retention_manager(config_manager: RetentionConfigManager,
                             lister: RecordLister,
                             deleter: DeletionProtocol,
                             metrics: MetricsSink,
                             dry_run: bool = False) -> RetentionManager:
    """Create a new RetentionManager instance."""
    return RetentionManager(config_manager, lister, deleter, metrics, dry_run=dry_run)
