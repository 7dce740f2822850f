"""
Shared fixtures for Taweret tests.
"""

from typing import Generator
from unittest.mock import AsyncMock

import pytest
from prometheus_client import CollectorRegistry

from taweret.monitoring.retention_metrics import BackupMetricsCollector
from taweret.storage.retention_deletion import DeletionProtocol
from tests.utils.fake_store import FakeResourceStore


@pytest.fixture
def prometheus_registry() -> Generator[CollectorRegistry, None, None]:
    """
    Provide a clean Prometheus registry for testing.

    Each test gets its own registry so metric names never collide.
    """
    yield CollectorRegistry()


@pytest.fixture
def metrics_collector(prometheus_registry) -> BackupMetricsCollector:
    return BackupMetricsCollector(registry=prometheus_registry)


@pytest.fixture
def store() -> FakeResourceStore:
    return FakeResourceStore()


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def deleter(store, fake_sleep) -> DeletionProtocol:
    return DeletionProtocol(store, poll_max_attempts=10, sleep=fake_sleep)
