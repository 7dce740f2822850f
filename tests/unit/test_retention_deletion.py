"""
Unit tests for the backup deletion protocol.
"""

from datetime import timedelta

import pytest
from structlog.testing import capture_logs

from taweret.connectors.base import ActionStatus, ResourceStoreError
from taweret.storage.retention_deletion import build_deletion_request, deletion_request_name
from taweret.storage.retention_errors import (
    DeletionRequestError, DeletionStatusError, DeletionTimeoutError, FinalizeDeleteError,
)
from taweret.storage.retention_models import DeletionState
from tests.utils.fake_store import make_config, make_record


@pytest.fixture
def backup(store):
    record = make_record("backup-daily-1", timedelta(days=1), location="s3://bucket/daily-1")
    store.backups[record.name] = record
    return record


class TestBuildDeletionRequest:
    """Test cases for the deletion request manifest."""

    def test_request_name(self):
        assert deletion_request_name("backup-daily-1") == "delete-backup-daily-1"

    def test_full_manifest(self, backup):
        config = make_config(profileName="s3-profile")

        manifest = build_deletion_request(backup, config)

        assert manifest["apiVersion"] == "cr.kanister.io/v1alpha1"
        assert manifest["kind"] == "ActionSet"
        assert manifest["metadata"] == {"name": "delete-backup-daily-1", "namespace": "kanister"}
        action = manifest["spec"]["actions"][0]
        assert action["name"] == "delete"
        assert action["blueprint"] == "postgres-blueprint"
        assert action["object"] == {"kind": "namespace", "name": "kanister", "namespace": "kanister"}
        assert action["artifacts"] == {
            "cloudObject": {"keyValue": {"backupLocation": "s3://bucket/daily-1"}},
        }
        assert action["profile"] == {"name": "s3-profile", "namespace": "kanister"}

    def test_manifest_without_location_or_profile(self):
        record = make_record("backup-daily-2", timedelta(days=1))

        action = build_deletion_request(record, make_config())["spec"]["actions"][0]

        assert "artifacts" not in action
        assert "profile" not in action


class TestDeletionProtocol:
    """Test cases for DeletionProtocol.delete."""

    @pytest.mark.asyncio
    async def test_successful_deletion(self, store, deleter, backup, fake_sleep):
        result = await deleter.delete(backup, make_config())

        assert result.state == DeletionState.COMPLETED
        assert result.action_state == "complete"
        assert result.request_created is True
        assert result.request_name == "delete-backup-daily-1"
        assert [r["metadata"]["name"] for r in store.created] == ["delete-backup-daily-1"]
        assert store.deleted == ["backup-daily-1"]
        fake_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_state_moves_through_requested_and_polling(self, store, deleter, backup):
        with capture_logs() as logs:
            result = await deleter.delete(backup, make_config())

        states = [(entry["event"], entry.get("state")) for entry in logs if "state" in entry]
        assert states == [
            ("Deletion request ready", "requested"),
            ("Polling deletion request", "polling"),
        ]
        assert all(entry["request"] == "delete-backup-daily-1" for entry in logs if "state" in entry)
        assert result.state == DeletionState.COMPLETED

    @pytest.mark.asyncio
    async def test_existing_request_is_reused(self, store, deleter, backup):
        """Test that a request left over from an earlier attempt is polled, not recreated."""
        store.requests["delete-backup-daily-1"] = {}

        result = await deleter.delete(backup, make_config())

        assert result.request_created is False
        assert store.created == []
        assert store.status_checks == ["delete-backup-daily-1"]
        assert store.deleted == ["backup-daily-1"]

    @pytest.mark.asyncio
    async def test_polling_backs_off_exponentially(self, store, deleter, backup, fake_sleep):
        store.status_script["delete-backup-daily-1"] = (
            [ActionStatus("running")] * 5 + [ActionStatus("complete")]
        )

        result = await deleter.delete(backup, make_config())

        assert result.state == DeletionState.COMPLETED
        assert [call.args[0] for call in fake_sleep.await_args_list] == [5, 10, 20, 40, 60]

    @pytest.mark.asyncio
    async def test_poll_gives_up_after_max_attempts(self, store, deleter, backup, fake_sleep):
        store.status_script["delete-backup-daily-1"] = [ActionStatus("running")]

        with pytest.raises(DeletionTimeoutError) as exc_info:
            await deleter.delete(backup, make_config())

        assert exc_info.value.backup_name == "backup-daily-1"
        assert exc_info.value.schedule == "daily"
        assert len(store.status_checks) == 10
        assert fake_sleep.await_count == 9
        assert store.deleted == []

    @pytest.mark.asyncio
    async def test_failed_action_still_finalizes(self, store, deleter, backup):
        store.status_script["delete-backup-daily-1"] = [
            ActionStatus("running"),
            ActionStatus("failed", error_message="artifact not found"),
        ]

        result = await deleter.delete(backup, make_config())

        assert result.state == DeletionState.FAILED
        assert result.action_state == "failed"
        assert result.error_message == "artifact not found"
        assert store.deleted == ["backup-daily-1"]

    @pytest.mark.asyncio
    async def test_backup_already_removed(self, store, deleter):
        """Test that a missing backup resource counts as deleted."""
        record = make_record("backup-daily-gone", timedelta(days=1))

        result = await deleter.delete(record, make_config())

        assert result.state == DeletionState.COMPLETED
        assert store.deleted == []

    @pytest.mark.asyncio
    async def test_finalize_error(self, store, deleter, backup):
        store.failures[("delete", "backup-daily-1")] = ResourceStoreError("forbidden", status_code=403)

        with pytest.raises(FinalizeDeleteError) as exc_info:
            await deleter.delete(backup, make_config())

        assert exc_info.value.backup_name == "backup-daily-1"

    @pytest.mark.asyncio
    async def test_request_error(self, store, deleter, backup):
        store.failures[("create", None)] = ResourceStoreError("admission denied", status_code=400)

        with pytest.raises(DeletionRequestError):
            await deleter.delete(backup, make_config())

        assert store.status_checks == []
        assert store.deleted == []

    @pytest.mark.asyncio
    async def test_existence_check_error(self, store, deleter, backup):
        store.failures[("exists", None)] = ResourceStoreError("connection reset")

        with pytest.raises(DeletionRequestError):
            await deleter.delete(backup, make_config())

    @pytest.mark.asyncio
    async def test_status_error(self, store, deleter, backup):
        store.failures[("get_status", None)] = ResourceStoreError("server error", status_code=500)

        with pytest.raises(DeletionStatusError):
            await deleter.delete(backup, make_config())

        assert store.deleted == []
