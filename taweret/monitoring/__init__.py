"""
Monitoring module for Taweret.

This module provides:
- Backup health metrics per schedule (counts by status, oldest/newest backup)
- Retention operation metrics (deletions, evaluation errors and durations)
- The Prometheus scrape endpoint
- Structured logging setup
"""

from .metrics_collector import MetricsCollector
from .retention_metrics import BackupGauges, BackupMetricsCollector, MetricsSink, report
from .metrics_endpoint import MetricsEndpoint, create_metrics_endpoint
from .logging_config import setup_logging

__all__ = [
    'MetricsCollector',
    'BackupGauges',
    'BackupMetricsCollector',
    'MetricsSink',
    'report',
    'MetricsEndpoint',
    'create_metrics_endpoint',
    'setup_logging'
]
