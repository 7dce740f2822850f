"""
Flask web application exposing Taweret metrics and health.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify

from taweret.monitoring.metrics_endpoint import MetricsEndpoint
from taweret.storage.retention_scheduler import RetentionScheduler


class TaweretWebApp:
    """Serves the Prometheus scrape endpoint and a health check."""

    def __init__(self, metrics_endpoint: MetricsEndpoint,
                 scheduler: Optional[RetentionScheduler] = None):
        self.app = Flask(__name__)
        self.metrics_endpoint = metrics_endpoint
        self.scheduler = scheduler
        self.logger = logging.getLogger(__name__)

        self._register_routes()

    def _register_routes(self):
        """Register all routes."""

        @self.app.route('/metrics', methods=['GET'])
        def metrics():
            return self.metrics_endpoint.get_metrics_response()

        @self.app.route('/health', methods=['GET'])
        def health_check():
            payload = {
                'status': 'healthy',
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'service': 'taweret',
            }
            if self.scheduler is not None:
                status = asdict(self.scheduler.get_status())
                for key in ('last_evaluation', 'next_evaluation'):
                    if status[key] is not None:
                        status[key] = status[key].isoformat()
                payload['scheduler'] = status
                if not status['running']:
                    payload['status'] = 'degraded'
            return jsonify(payload)

    def run(self, host: str = '0.0.0.0', port: int = 2112):
        """Serve until interrupted."""
        self.logger.info(f"Serving metrics on {host}:{port}")
        self.app.run(host=host, port=port, threaded=True, use_reloader=False)


def create_web_app(metrics_endpoint: MetricsEndpoint,
                   scheduler: Optional[RetentionScheduler] = None) -> TaweretWebApp:
    """Create a new web application instance."""
    return TaweretWebApp(metrics_endpoint, scheduler)
