"""
Integration tests for the retention system.

Runs full evaluation cycles through the Kubernetes client against an
in-memory API server.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest
import yaml

from taweret.config.settings import KubernetesConfig
from taweret.connectors.kubernetes import KubernetesClient
from taweret.storage.retention_config import RetentionConfigManager
from taweret.storage.retention_deletion import DeletionProtocol
from taweret.storage.retention_manager import RetentionManager
from tests.utils.fake_store import NOW

ACTIONSET_PREFIX = "/apis/cr.kanister.io/v1alpha1/namespaces/"


class FakeApiServer:
    """Minimal Kubernetes API serving ActionSets and ConfigMaps."""

    def __init__(self, deletion_state="complete"):
        self.actionsets = {}
        self.config_maps = []
        self.deletion_state = deletion_state
        self.posted = []

    def add_backup(self, name, schedule, age, state="complete"):
        self.actionsets[name] = {
            "metadata": {
                "name": name,
                "creationTimestamp": (NOW - age).strftime("%Y-%m-%dT%H:%M:%SZ"),
            },
            "spec": {"actions": [{"name": "backup", "options": {"backup-schedule": schedule}}]},
            "status": {
                "state": state,
                "actions": [{"artifacts": {"cloudObject": {"keyValue": {"backupLocation": f"s3://backups/{name}"}}}}],
            },
        }

    def add_config(self, name, backups, days, namespace="kanister"):
        self.config_maps.append({
            "metadata": {"name": name},
            "data": {"backup-config.yaml": yaml.safe_dump({
                "name": name,
                "kanisterNamespace": namespace,
                "blueprintName": "postgres-blueprint",
                "profileName": "s3-profile",
                "retention": {"backups": backups, "days": days},
            })},
        })

    def handle(self, request):
        path = request.url.path
        if path.endswith("/configmaps"):
            return httpx.Response(200, json={"items": self.config_maps})

        name = path.split("/actionsets")[1].strip("/")
        if request.method == "GET" and not name:
            return httpx.Response(200, json={"items": list(self.actionsets.values())})
        if request.method == "GET":
            if name not in self.actionsets:
                return httpx.Response(404, json={"reason": "NotFound"})
            return httpx.Response(200, json=self.actionsets[name])
        if request.method == "POST":
            manifest = json.loads(request.content)
            manifest["status"] = {"state": self.deletion_state}
            self.actionsets[manifest["metadata"]["name"]] = manifest
            self.posted.append(manifest)
            return httpx.Response(201, json=manifest)
        if request.method == "DELETE":
            if self.actionsets.pop(name, None) is None:
                return httpx.Response(404, json={"reason": "NotFound"})
            return httpx.Response(200, json={})
        return httpx.Response(405)


@pytest.fixture
def api():
    return FakeApiServer()


@pytest.fixture
def client(api):
    config = KubernetesConfig(
        api_server="https://k8s.test",
        token_path="/nonexistent/token",
        ca_path="/nonexistent/ca.crt",
        retry_backoff_seconds=0,
    )
    return KubernetesClient(config, transport=httpx.MockTransport(api.handle))


def build_manager(client, metrics, poll_max_attempts=500):
    deleter = DeletionProtocol(client, poll_max_attempts=poll_max_attempts, sleep=AsyncMock())
    return RetentionManager(
        RetentionConfigManager(client), client, deleter, metrics, clock=lambda: NOW,
    )


def completed_gauge(registry, schedule):
    return registry.get_sample_value(
        "backup_count", {"backup_config_name": schedule, "backup_status": "completed"})


class TestRetentionSystem:
    """End to end evaluation cycles."""

    @pytest.mark.asyncio
    async def test_limit_reached_then_exceeded(self, api, client, metrics_collector, prometheus_registry):
        api.add_config("daily", backups=2, days=7)
        api.add_backup("backup-a", "daily", timedelta(days=10))
        api.add_backup("backup-b", "daily", timedelta(days=3))
        api.add_backup("backup-c", "daily", timedelta(days=2))
        api.add_backup("backup-d", "daily", timedelta(days=1), state="pending")

        async with client:
            manager = build_manager(client, metrics_collector)

            first = await manager.run_evaluation()
            assert first[0].deleted == []
            assert first[0].in_use_count == 2
            assert first[0].counts["pending"] == 1
            assert completed_gauge(prometheus_registry, "daily") == 2

            api.add_backup("backup-e", "daily", timedelta(days=1))
            second = await manager.run_evaluation()

        assert second[0].status == 'success'
        assert second[0].deleted == ["backup-b"]
        assert second[0].in_use_count == 2
        assert "backup-b" not in api.actionsets
        assert "backup-a" in api.actionsets

        request = api.posted[0]
        assert request["metadata"]["name"] == "delete-backup-b"
        action = request["spec"]["actions"][0]
        assert action["artifacts"]["cloudObject"]["keyValue"]["backupLocation"] == "s3://backups/backup-b"
        assert action["profile"] == {"name": "s3-profile", "namespace": "kanister"}

        assert completed_gauge(prometheus_registry, "daily") == 2
        assert prometheus_registry.get_sample_value(
            "oldest_backup_timestamp", {"backup_config_name": "daily"}) == int((NOW - timedelta(days=2)).timestamp())

    @pytest.mark.asyncio
    async def test_in_use_never_exceeds_limit(self, api, client, metrics_collector):
        api.add_config("hourly", backups=3, days=2)
        for hours in range(1, 11):
            api.add_backup(f"backup-hourly-{hours}", "hourly", timedelta(hours=hours))

        async with client:
            results = await build_manager(client, metrics_collector).run_evaluation()

        assert results[0].in_use_count <= 3
        assert results[0].deleted == [f"backup-hourly-{hours}" for hours in range(10, 3, -1)]

    @pytest.mark.asyncio
    async def test_stuck_deletion_does_not_block_other_schedules(self, client, api,
                                                                 metrics_collector, prometheus_registry):
        api.deletion_state = "running"
        api.add_config("daily", backups=1, days=7)
        api.add_config("weekly", backups=5, days=30)
        api.add_backup("backup-daily-1", "daily", timedelta(days=2))
        api.add_backup("backup-daily-2", "daily", timedelta(days=1))
        api.add_backup("backup-weekly-1", "weekly", timedelta(days=8))

        async with client:
            results = await build_manager(client, metrics_collector, poll_max_attempts=3).run_evaluation()

        assert [r.status for r in results] == ['failed', 'success']
        assert "backup-daily-1" in api.actionsets
        assert completed_gauge(prometheus_registry, "weekly") == 1
        assert prometheus_registry.get_sample_value(
            "backup_evaluation_errors_total",
            {"backup_config_name": "daily", "error_type": "DeletionTimeoutError"}) == 1

    @pytest.mark.asyncio
    async def test_rerun_resumes_existing_deletion_request(self, client, api, metrics_collector):
        api.add_config("daily", backups=1, days=7)
        api.add_backup("backup-daily-1", "daily", timedelta(days=2))
        api.add_backup("backup-daily-2", "daily", timedelta(days=1))
        api.actionsets["delete-backup-daily-1"] = {
            "metadata": {"name": "delete-backup-daily-1"},
            "spec": {"actions": [{"name": "delete"}]},
            "status": {"state": "complete"},
        }

        async with client:
            results = await build_manager(client, metrics_collector).run_evaluation()

        assert results[0].deleted == ["backup-daily-1"]
        assert api.posted == []
