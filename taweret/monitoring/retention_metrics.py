"""
Backup health metrics.

`report` derives the gauge values for one schedule from its classification;
a MetricsSink publishes them. BackupMetricsCollector is the Prometheus sink.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from taweret.storage.retention_models import BackupCounts, ClassifiedSet, DeletionResult
from .metrics_collector import MetricsCollector

COMPLETED_LABEL = "completed"


@dataclass
class BackupGauges:
    """Gauge values for one schedule."""
    schedule_name: str
    oldest_backup: int = 0
    newest_backup: int = 0
    backup_counts: Dict[str, int] = field(default_factory=dict)


def _unix_seconds(moment: datetime) -> int:
    return int(moment.timestamp())


def report(classified: ClassifiedSet, counts: BackupCounts, schedule_name: str) -> BackupGauges:
    """
    Derive gauge values from a schedule's classification.

    Oldest and newest timestamps are unix seconds of the first and last in-use
    backup, or 0 when there are none. The in-use total is reported under the
    'completed' status.
    """
    gauges = BackupGauges(schedule_name=schedule_name)
    if classified:
        gauges.oldest_backup = _unix_seconds(classified[0].created_at)
        gauges.newest_backup = _unix_seconds(classified[-1].created_at)

    gauges.backup_counts = {COMPLETED_LABEL: len(classified), **counts.as_dict()}
    return gauges


class MetricsSink(ABC):
    """Destination for per-schedule metric updates."""

    @abstractmethod
    def publish(self, gauges: BackupGauges) -> None:
        """Overwrite the gauges of one schedule."""
        pass

    @abstractmethod
    def record_evaluation(self, schedule_name: str, duration_seconds: float,
                          deletions: List[DeletionResult],
                          error: Optional[BaseException] = None) -> None:
        """Record the outcome of one schedule evaluation."""
        pass


class BackupMetricsCollector(MetricsCollector, MetricsSink):
    """Prometheus implementation of the metrics sink."""

    def _initialize_metrics(self) -> None:
        self.backup_count = self.create_gauge(
            'backup_count',
            'The amount of backups',
            ['backup_config_name', 'backup_status']
        )
        self.oldest_backup = self.create_gauge(
            'oldest_backup_timestamp',
            'Creation time of the oldest in-use backup',
            ['backup_config_name']
        )
        self.newest_backup = self.create_gauge(
            'newest_backup_timestamp',
            'Creation time of the newest in-use backup',
            ['backup_config_name']
        )
        self.deletions = self.create_counter(
            'backup_deletions_total',
            'Backups deleted by retention enforcement',
            ['backup_config_name', 'outcome']
        )
        self.evaluation_errors = self.create_counter(
            'backup_evaluation_errors_total',
            'Failed schedule evaluations',
            ['backup_config_name', 'error_type']
        )
        self.evaluation_duration = self.create_histogram(
            'backup_evaluation_duration_seconds',
            'Time spent evaluating a schedule',
            ['backup_config_name'],
            buckets=[0.1, 0.5, 1, 5, 15, 30, 60, 300, 900, 1800]
        )

    def publish(self, gauges: BackupGauges) -> None:
        name = gauges.schedule_name
        self.oldest_backup.labels(backup_config_name=name).set(gauges.oldest_backup)
        self.newest_backup.labels(backup_config_name=name).set(gauges.newest_backup)
        for status, count in gauges.backup_counts.items():
            self.backup_count.labels(backup_config_name=name, backup_status=status).set(count)

    def record_evaluation(self, schedule_name: str, duration_seconds: float,
                          deletions: List[DeletionResult],
                          error: Optional[BaseException] = None) -> None:
        self.evaluation_duration.labels(backup_config_name=schedule_name).observe(duration_seconds)
        for deletion in deletions:
            self.deletions.labels(
                backup_config_name=schedule_name,
                outcome=deletion.state.value
            ).inc()
        if error is not None:
            self.evaluation_errors.labels(
                backup_config_name=schedule_name,
                error_type=type(error).__name__
            ).inc()
