"""
Prometheus exposition of the backup metrics registry.
"""

import logging

from flask import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .retention_metrics import BackupMetricsCollector

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
}

class MetricsEndpoint:
    """Renders a collector's registry in the Prometheus text format."""

    def __init__(self, collector: BackupMetricsCollector):
        self.collector = collector
        self.registry = collector.get_registry()
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def get_metrics_response(self) -> Response:
        """
        Build the scrape response.

        Returns:
            Response with the exposition text, or a 500 carrying the error as
            a comment line when rendering fails
        """
        try:
            body = generate_latest(self.registry)
        except Exception as e:
            self.logger.error(f"Failed to render metrics: {e}")
            return Response(f"# Error generating metrics: {e}\n", mimetype=CONTENT_TYPE_LATEST, status=500)

        return Response(body, mimetype=CONTENT_TYPE_LATEST, headers=NO_CACHE_HEADERS)


def create_metrics_endpoint(collector: BackupMetricsCollector) -> MetricsEndpoint:
    """Create a MetricsEndpoint for the backup metrics collector."""
    return MetricsEndpoint(collector)
