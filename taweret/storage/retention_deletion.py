"""
Deletion protocol for a single backup.

A backup is removed by submitting a Kanister 'delete' ActionSet for its
artifact, waiting for that action to finish and then deleting the original
backup ActionSet so it disappears from future listings.

The protocol is idempotent: the deletion request is named after the backup,
so a retry after a crash finds the existing request and resumes polling it
instead of submitting a duplicate.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from tenacity import (
    AsyncRetrying, RetryError, retry_if_result, stop_after_attempt,
    stop_after_delay, wait_exponential,
)

from taweret.connectors.base import (
    ActionStatus, DeletionClient, ResourceNotFoundError, ResourceStoreError,
)
from .retention_errors import (
    DeletionRequestError, DeletionStatusError, DeletionTimeoutError, FinalizeDeleteError,
)
from .retention_models import (
    TERMINAL_ACTION_STATES, BackupRecord, BackupStatus, DeletionResult,
    DeletionState, RetentionConfig,
)

logger = structlog.get_logger(__name__)

DELETION_REQUEST_PREFIX = "delete-"
ACTIONSET_API_VERSION = "cr.kanister.io/v1alpha1"


def deletion_request_name(backup_name: str) -> str:
    """Name of the deletion request for a backup."""
    return f"{DELETION_REQUEST_PREFIX}{backup_name}"


def build_deletion_request(backup: BackupRecord, config: RetentionConfig) -> Dict[str, Any]:
    """
    Build the 'delete' ActionSet manifest for a backup.

    The artifact block is only included when the backup reported a location,
    and the profile reference only when the schedule names a profile.
    """
    action: Dict[str, Any] = {
        "name": "delete",
        "blueprint": config.blueprint_name,
        "object": {
            "kind": "namespace",
            "name": config.namespace,
            "namespace": config.namespace,
        },
    }
    if backup.backup_location:
        action["artifacts"] = {
            "cloudObject": {"keyValue": {"backupLocation": backup.backup_location}},
        }
    if config.profile_name:
        action["profile"] = {"name": config.profile_name, "namespace": config.namespace}

    return {
        "apiVersion": ACTIONSET_API_VERSION,
        "kind": "ActionSet",
        "metadata": {
            "name": deletion_request_name(backup.name),
            "namespace": config.namespace,
        },
        "spec": {"actions": [action]},
    }


class DeletionProtocol:
    """
    Deletes backups through deletion requests.

    Polling uses exponential backoff starting at ``poll_initial_seconds`` and
    capped at ``poll_max_interval_seconds``; it gives up with
    DeletionTimeoutError after ``poll_timeout_seconds`` or ``poll_max_attempts``
    status checks, whichever comes first.
    """

    def __init__(self,
                 client: DeletionClient,
                 poll_initial_seconds: float = 5.0,
                 poll_max_interval_seconds: float = 60.0,
                 poll_timeout_seconds: float = 1800.0,
                 poll_max_attempts: int = 500,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.client = client
        self.poll_initial_seconds = poll_initial_seconds
        self.poll_max_interval_seconds = poll_max_interval_seconds
        self.poll_timeout_seconds = poll_timeout_seconds
        self.poll_max_attempts = poll_max_attempts
        self._sleep = sleep

    async def delete(self, backup: BackupRecord, config: RetentionConfig) -> DeletionResult:
        """
        Delete one backup.

        Args:
            backup: The in-use backup to remove
            config: Retention config of the backup's schedule

        Returns:
            DeletionResult with the terminal state of the deletion action

        Raises:
            DeletionRequestError: If the request cannot be checked for or submitted
            DeletionStatusError: If the request status cannot be fetched
            DeletionTimeoutError: If the request does not finish in time
            FinalizeDeleteError: If the original backup cannot be removed
        """
        log = logger.bind(schedule=config.name, backup=backup.name)
        request_name = deletion_request_name(backup.name)
        result = DeletionResult(
            backup_name=backup.name,
            request_name=request_name,
            state=DeletionState.NOT_STARTED,
        )

        result.request_created = await self._request(backup, config, request_name, log)
        result.state = DeletionState.REQUESTED
        log.debug("Deletion request ready", request=request_name,
                  created=result.request_created, state=result.state.value)

        result.state = DeletionState.POLLING
        log.info("Polling deletion request", request=request_name, state=result.state.value)
        status = await self._wait_for_completion(backup, config, request_name, log)
        result.action_state = status.state

        if status.state == BackupStatus.FAILED.value:
            # The backup resource is still removed below, even though the
            # delete action reported a failure.
            result.state = DeletionState.FAILED
            result.error_message = status.error_message
            log.error("Deletion action failed",
                      request=request_name,
                      error=status.error_message)
        else:
            result.state = DeletionState.COMPLETED
            log.info("Deletion action completed", request=request_name)

        await self._finalize(backup, config, log)
        return result

    async def _request(self, backup: BackupRecord, config: RetentionConfig,
                       request_name: str, log) -> bool:
        """Submit the deletion request unless it already exists."""
        try:
            if await self.client.exists(config.namespace, request_name):
                log.info("Deletion request already exists, skipping creation",
                         request=request_name)
                return False

            manifest = build_deletion_request(backup, config)
            await self.client.create(config.namespace, manifest)
        except ResourceStoreError as e:
            raise DeletionRequestError(
                f"error submitting deletion request {request_name}: {e}",
                backup.name, config.name,
            ) from e

        log.info("Deletion request submitted",
                 request=request_name,
                 backup_location=backup.backup_location or None,
                 profile=config.profile_name or None)
        return True

    async def _fetch_status(self, namespace: str, request_name: str, log) -> ActionStatus:
        status = await self.client.get_status(namespace, request_name)
        if status.state not in TERMINAL_ACTION_STATES:
            log.debug("Waiting for deletion request", request=request_name, state=status.state)
        return status

    async def _wait_for_completion(self, backup: BackupRecord, config: RetentionConfig,
                                   request_name: str, log) -> ActionStatus:
        """Poll the deletion request until it reaches a terminal state."""
        retryer = AsyncRetrying(
            retry=retry_if_result(lambda status: status.state not in TERMINAL_ACTION_STATES),
            wait=wait_exponential(
                multiplier=self.poll_initial_seconds,
                min=self.poll_initial_seconds,
                max=self.poll_max_interval_seconds,
            ),
            stop=stop_after_delay(self.poll_timeout_seconds) | stop_after_attempt(self.poll_max_attempts),
            sleep=self._sleep,
        )
        try:
            return await retryer(self._fetch_status, config.namespace, request_name, log)
        except RetryError as e:
            last: Optional[ActionStatus] = e.last_attempt.result()
            raise DeletionTimeoutError(
                f"deletion request {request_name} still '{last.state if last else ''}' "
                f"after {e.last_attempt.attempt_number} checks",
                backup.name, config.name,
            ) from e
        except ResourceStoreError as e:
            raise DeletionStatusError(
                f"error retrieving deletion request {request_name}: {e}",
                backup.name, config.name,
            ) from e

    async def _finalize(self, backup: BackupRecord, config: RetentionConfig, log) -> None:
        """Remove the original backup ActionSet."""
        try:
            await self.client.delete_resource(config.namespace, backup.name)
        except ResourceNotFoundError:
            log.warning("Backup actionset already removed")
            return
        except ResourceStoreError as e:
            raise FinalizeDeleteError(
                f"error deleting backup actionset {backup.name}: {e}",
                backup.name, config.name,
            ) from e
        log.info("Backup actionset deleted")
