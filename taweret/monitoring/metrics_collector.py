"""
Base class for Taweret's Prometheus collectors.

A collector owns the registry its metrics are bound to, so tests and the
exporter can each use an isolated registry.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class MetricsCollector(ABC):
    """
    Registry-bound metrics collector.

    Subclasses declare their metrics in ``_initialize_metrics`` using the
    ``create_*`` helpers.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._initialize_metrics()

    @abstractmethod
    def _initialize_metrics(self) -> None:
        """Declare the collector's metrics."""

    def get_registry(self) -> CollectorRegistry:
        return self.registry

    def create_counter(self, name: str, description: str,
                       labelnames: Optional[List[str]] = None) -> Counter:
        return Counter(name, description, labelnames or [], registry=self.registry)

    def create_gauge(self, name: str, description: str,
                     labelnames: Optional[List[str]] = None) -> Gauge:
        return Gauge(name, description, labelnames or [], registry=self.registry)

    def create_histogram(self, name: str, description: str,
                         labelnames: Optional[List[str]] = None,
                         buckets: Optional[Sequence[float]] = None) -> Histogram:
        """Histogram bound to this registry; default buckets unless given."""
        if buckets is None:
            return Histogram(name, description, labelnames or [], registry=self.registry)
        return Histogram(name, description, labelnames or [], buckets=buckets, registry=self.registry)
