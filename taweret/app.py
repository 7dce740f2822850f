"""
Main application entry point.

Wires the Kubernetes client, the retention manager, the scheduler and the
metrics web app together and runs them.
"""

import argparse
import asyncio
import sys
import threading
from pathlib import Path
from typing import List, Optional

import structlog

from taweret.config.settings import TaweretSettings, load_settings
from taweret.connectors.kubernetes import KubernetesClient, create_kubernetes_client
from taweret.monitoring.logging_config import setup_logging
from taweret.monitoring.metrics_endpoint import create_metrics_endpoint
from taweret.monitoring.retention_metrics import BackupMetricsCollector, MetricsSink
from taweret.storage.retention_config import RetentionConfigManager
from taweret.storage.retention_deletion import DeletionProtocol
from taweret.storage.retention_errors import ConfigParseError
from taweret.storage.retention_manager import RetentionManager, create_retention_manager
from taweret.storage.retention_scheduler import RetentionScheduler, create_retention_scheduler
from taweret.web_app import create_web_app

logger = structlog.get_logger(__name__)


def build_manager(settings: TaweretSettings, client: KubernetesClient,
                  metrics: MetricsSink) -> RetentionManager:
    """Assemble a retention manager on top of a resource store client."""
    config_manager = RetentionConfigManager(client, settings.config_namespace, settings.config_key)
    deleter = DeletionProtocol(
        client,
        poll_initial_seconds=settings.poll_initial_seconds,
        poll_max_interval_seconds=settings.poll_max_interval_seconds,
        poll_timeout_seconds=settings.poll_timeout_seconds,
        poll_max_attempts=settings.poll_max_attempts,
    )
    return create_retention_manager(config_manager, client, deleter, metrics, dry_run=settings.dry_run)


async def check_configs(settings: TaweretSettings) -> int:
    """Validate the backup configs; returns the process exit status."""
    async with create_kubernetes_client(settings.kubernetes) as client:
        config_manager = RetentionConfigManager(client, settings.config_namespace, settings.config_key)
        try:
            configs = await config_manager.get_configs()
        except ConfigParseError as e:
            logger.error("Invalid backup configuration", source=e.source, error=str(e))
            return 1

    logger.info("Backup configuration valid", schedules=[config.name for config in configs])
    return 0


async def run_once(settings: TaweretSettings) -> int:
    """Run a single evaluation cycle; returns the process exit status."""
    async with create_kubernetes_client(settings.kubernetes) as client:
        manager = build_manager(settings, client, BackupMetricsCollector())
        try:
            results = await manager.run_evaluation()
        except ConfigParseError as e:
            logger.error("Invalid backup configuration", source=e.source, error=str(e))
            return 1

    return 1 if any(result.status == 'failed' for result in results) else 0


async def _run_scheduler(client: KubernetesClient, scheduler: RetentionScheduler) -> None:
    async with client:
        await scheduler.start()
        await scheduler.wait()


def serve(settings: TaweretSettings) -> int:
    """Run the scheduler in the background and serve metrics in the foreground."""
    if asyncio.run(check_configs(settings)) != 0:
        return 1

    collector = BackupMetricsCollector()
    client = create_kubernetes_client(settings.kubernetes)
    manager = build_manager(settings, client, collector)
    scheduler = create_retention_scheduler(
        manager,
        interval_minutes=settings.evaluation_interval_minutes,
        evaluate_on_start=settings.evaluate_on_start,
    )

    worker = threading.Thread(
        target=asyncio.run,
        args=(_run_scheduler(client, scheduler),),
        name="retention-scheduler",
        daemon=True,
    )
    worker.start()

    web_app = create_web_app(create_metrics_endpoint(collector), scheduler)
    web_app.run(host=settings.metrics_host, port=settings.metrics_port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point."""
    parser = argparse.ArgumentParser(description="Taweret backup retention service")
    parser.add_argument('--config', help='Path to the settings file (default: configs/taweret.yaml)')
    parser.add_argument('--once', action='store_true', help='Run one evaluation cycle and exit')
    parser.add_argument('--check-config', action='store_true',
                        help='Validate the backup configs and exit')
    parser.add_argument('--dry-run', action='store_true',
                        help='Log the backups that would be deleted without deleting them')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)

    settings = load_settings(Path(args.config) if args.config else None)
    if args.dry_run:
        settings.dry_run = True

    setup_logging('DEBUG' if args.verbose else settings.log_level)

    if args.check_config:
        return asyncio.run(check_configs(settings))
    if args.once:
        return asyncio.run(run_once(settings))
    return serve(settings)


if __name__ == '__main__':
    sys.exit(main())
