"""
Decoding of raw ActionSet objects into backup records.

All field access on the untyped resource objects happens here. Shape errors
are reported with the dotted path of the offending field.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .retention_errors import RecordDecodeError
from .retention_models import ZERO_TIME, BackupRecord

BACKUP_ACTION_PREFIX = "backup"
SCHEDULE_OPTION = "backup-schedule"

_RFC3339 = re.compile(
    r"\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})"
)


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC3339 timestamp; anything unparsable becomes ZERO_TIME."""
    if not isinstance(value, str) or not _RFC3339.fullmatch(value):
        return ZERO_TIME
    try:
        parsed = datetime.fromisoformat(value.upper().replace("Z", "+00:00"))
    except ValueError:
        return ZERO_TIME
    return parsed.astimezone(timezone.utc)


def _require_mapping(value: Any, field: str, resource: Optional[str] = None) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise RecordDecodeError(field, "expected a mapping", resource)
    return value


def _backup_location(status: Dict[str, Any]) -> str:
    """Extract the artifact location reported by the backup action, if any."""
    actions = status.get("actions")
    if not isinstance(actions, list) or not actions or not isinstance(actions[0], dict):
        return ""
    artifacts = actions[0].get("artifacts")
    if not isinstance(artifacts, dict):
        return ""
    cloud_object = artifacts.get("cloudObject")
    if not isinstance(cloud_object, dict):
        return ""

    key_value = cloud_object.get("keyValue")
    if isinstance(key_value, dict) and isinstance(key_value.get("backupLocation"), str):
        return key_value["backupLocation"]
    location = cloud_object.get("backupLocation")
    return location if isinstance(location, str) else ""


def decode_actionset(obj: Dict[str, Any]) -> Optional[BackupRecord]:
    """
    Decode one ActionSet into a backup record.

    Args:
        obj: ActionSet object as returned by the Kubernetes API

    Returns:
        BackupRecord, or None when the ActionSet is not a scheduled backup

    Raises:
        RecordDecodeError: If a required field is missing or malformed
    """
    metadata = _require_mapping(obj.get("metadata"), "metadata")
    name = metadata.get("name")
    if not isinstance(name, str) or not name:
        raise RecordDecodeError("metadata.name", "expected a non-empty string")

    spec = _require_mapping(obj.get("spec"), "spec", name)
    actions = spec.get("actions")
    if not isinstance(actions, list) or not actions:
        raise RecordDecodeError("spec.actions", "expected a non-empty list", name)
    action = _require_mapping(actions[0], "spec.actions[0]", name)

    action_name = action.get("name")
    if not isinstance(action_name, str):
        raise RecordDecodeError("spec.actions[0].name", "expected a string", name)
    if not action_name.startswith(BACKUP_ACTION_PREFIX):
        return None

    options = action.get("options")
    if options is None:
        return None
    options = _require_mapping(options, "spec.actions[0].options", name)
    schedule = options.get(SCHEDULE_OPTION)
    if not isinstance(schedule, str):
        return None

    status = obj.get("status")
    if status is None:
        status = {}
    status = _require_mapping(status, "status", name)
    state = status.get("state", "")
    if state is None:
        state = ""
    if not isinstance(state, str):
        raise RecordDecodeError("status.state", "expected a string", name)

    return BackupRecord(
        name=name,
        schedule=schedule,
        status=state,
        created_at=parse_timestamp(metadata.get("creationTimestamp")),
        backup_location=_backup_location(status),
    )
