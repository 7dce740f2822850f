"""
Unit tests for the command line entry point.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from taweret import app
from taweret.config.settings import TaweretSettings
from taweret.storage.retention_models import BackupRecord
from tests.utils.fake_store import FakeResourceStore

VALID = yaml.safe_dump({
    "name": "daily",
    "kanisterNamespace": "kanister",
    "blueprintName": "postgres-blueprint",
    "retention": {"backups": 1, "days": 7},
})


def recent_backup(name, age):
    return BackupRecord(name, "daily", "complete", created_at=datetime.now(timezone.utc) - age)


@pytest.fixture
def store():
    return FakeResourceStore(
        backups=[
            recent_backup("daily-1", timedelta(hours=3)),
            recent_backup("daily-2", timedelta(hours=1)),
        ],
        config_maps=[{"name": "daily", "data": {"backup-config.yaml": VALID}}],
    )


@pytest.fixture
def patched_client(store):
    with patch('taweret.app.create_kubernetes_client', return_value=store):
        yield store


class TestCheckConfigs:
    """Test cases for config validation."""

    @pytest.mark.asyncio
    async def test_valid_configs(self, patched_client):
        assert await app.check_configs(TaweretSettings()) == 0

    @pytest.mark.asyncio
    async def test_invalid_config(self, patched_client):
        patched_client.config_maps.append({"name": "broken", "data": {"backup-config.yaml": "name: ["}})

        assert await app.check_configs(TaweretSettings()) == 1


class TestRunOnce:
    """Test cases for a single evaluation cycle."""

    @pytest.mark.asyncio
    async def test_enforces_retention(self, patched_client):
        assert await app.run_once(TaweretSettings()) == 0

        assert [r["metadata"]["name"] for r in patched_client.created] == ["delete-daily-1"]
        assert patched_client.deleted == ["daily-1"]

    @pytest.mark.asyncio
    async def test_dry_run(self, patched_client):
        assert await app.run_once(TaweretSettings(dry_run=True)) == 0

        assert patched_client.deleted == []

    @pytest.mark.asyncio
    async def test_failed_schedule_exit_status(self, patched_client):
        patched_client.failures[("list", None)] = RuntimeError("api unavailable")

        assert await app.run_once(TaweretSettings()) == 1


class TestMain:
    """Test cases for argument handling."""

    @pytest.fixture
    def settings_path(self, tmp_path):
        path = tmp_path / "taweret.yaml"
        path.write_text("log_level: WARNING\n")
        return path

    def test_once_with_dry_run(self, settings_path):
        with patch('taweret.app.setup_logging') as setup_logging, \
                patch('taweret.app.run_once', new_callable=AsyncMock, return_value=0) as run_once:
            status = app.main(['--config', str(settings_path), '--once', '--dry-run'])

        assert status == 0
        setup_logging.assert_called_once_with('WARNING')
        assert run_once.await_args.args[0].dry_run is True

    def test_check_config(self, settings_path):
        with patch('taweret.app.setup_logging'), \
                patch('taweret.app.check_configs', new_callable=AsyncMock, return_value=1) as check:
            status = app.main(['--config', str(settings_path), '--check-config', '--verbose'])

        assert status == 1
        check.assert_awaited_once()

    def test_verbose_enables_debug_logging(self, settings_path):
        with patch('taweret.app.setup_logging') as setup_logging, \
                patch('taweret.app.check_configs', new_callable=AsyncMock, return_value=0):
            app.main(['--config', str(settings_path), '--check-config', '-v'])

        setup_logging.assert_called_once_with('DEBUG')

    def test_serve_stops_on_invalid_config(self, settings_path):
        with patch('taweret.app.setup_logging'), \
                patch('taweret.app.check_configs', new_callable=AsyncMock, return_value=1), \
                patch('taweret.app.create_web_app') as create_web_app:
            status = app.main(['--config', str(settings_path)])

        assert status == 1
        create_web_app.assert_not_called()
