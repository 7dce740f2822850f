"""
Data models for the retention system.

This module contains the value types shared by the classifier, the enforcer
and the deletion protocol, plus the pydantic models that decode a schedule's
backup-config.yaml document.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Stand-in for absent or unparsable creation timestamps
ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)

_INTEGER_STRING = re.compile(r"[+-]?[0-9]+")


class BackupStatus(Enum):
    """States reported by the action executor for a backup ActionSet."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    ATTEMPT_FAILED = "attemptFailed"
    SKIPPED = "skipped"
    DELETING = "deleting"


# Statuses that count against the retention limit
IN_USE_STATUSES = frozenset({BackupStatus.COMPLETE.value, BackupStatus.FAILED.value})

# Terminal states of a deletion request
TERMINAL_ACTION_STATES = frozenset({BackupStatus.COMPLETE.value, BackupStatus.FAILED.value})


class DeletionState(Enum):
    """Progress of a single backup deletion."""
    NOT_STARTED = "not_started"
    REQUESTED = "requested"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BackupRecord:
    """One observed backup attempt."""
    name: str
    schedule: str
    status: str
    created_at: datetime = ZERO_TIME
    backup_location: str = ""
    in_use: bool = False


@dataclass
class BackupCounts:
    """Tally of records that are not in use, by status."""
    pending: int = 0
    running: int = 0
    failed: int = 0
    skipped: int = 0
    deleting: int = 0

    _BUCKETS = {
        BackupStatus.PENDING.value: "pending",
        BackupStatus.RUNNING.value: "running",
        BackupStatus.FAILED.value: "failed",
        BackupStatus.ATTEMPT_FAILED.value: "failed",
        # spelling reported by Kanister ActionSets
        BackupStatus.ATTEMPT_FAILED.value.lower(): "failed",
        BackupStatus.SKIPPED.value: "skipped",
        BackupStatus.DELETING.value: "deleting",
    }

    def increment(self, status: str) -> None:
        """Count a record under its bucket; unknown statuses are ignored."""
        bucket = self._BUCKETS.get(status)
        if bucket is not None:
            setattr(self, bucket, getattr(self, bucket) + 1)

    def as_dict(self) -> Dict[str, int]:
        return {
            "pending": self.pending,
            "running": self.running,
            "failed": self.failed,
            "skipped": self.skipped,
            "deleting": self.deleting,
        }


# In-use records for one schedule, oldest first
ClassifiedSet = List[BackupRecord]


class Classification(NamedTuple):
    classified: ClassifiedSet
    counts: BackupCounts


@dataclass
class DeletionResult:
    """Outcome of deleting one backup through a deletion request."""
    backup_name: str
    request_name: str
    state: DeletionState
    action_state: str = ""
    error_message: Optional[str] = None
    request_created: bool = False


class EnforcementResult(NamedTuple):
    classified: ClassifiedSet
    counts: BackupCounts
    deletions: List[DeletionResult]


def coerce_retention_number(value: Any) -> int:
    """
    Decode a retention number from YAML.

    Integers pass through, floats are truncated toward zero, strings must hold
    a plain decimal integer and a missing value means zero.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError("boolean is not a valid retention number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{value} is not a valid retention number")
        return int(value)
    if isinstance(value, str):
        if not _INTEGER_STRING.fullmatch(value):
            raise ValueError(f"'{value}' is not an integer")
        return int(value)
    raise ValueError(f"unsupported retention value type: {type(value).__name__}")


class RetentionSettings(BaseModel):
    """Retention limits: a backup count and an age window."""
    model_config = ConfigDict(extra="ignore")

    backups: int = Field(0, ge=0)
    minutes: int = Field(0, ge=0)
    hours: int = Field(0, ge=0)
    days: int = Field(0, ge=0)
    months: int = Field(0, ge=0)
    years: int = Field(0, ge=0)

    @field_validator("backups", "minutes", "hours", "days", "months", "years", mode="before")
    @classmethod
    def _coerce_number(cls, value: Any) -> int:
        return coerce_retention_number(value)


class RetentionConfig(BaseModel):
    """One schedule's retention policy, as stored in backup-config.yaml."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    namespace: str = Field(alias="kanisterNamespace", min_length=1)
    blueprint_name: str = Field(alias="blueprintName", min_length=1)
    profile_name: str = Field("", alias="profileName")
    retention: RetentionSettings = Field(default_factory=RetentionSettings)

    @field_validator("name", "namespace", "blueprint_name", "profile_name", mode="before")
    @classmethod
    def _numeric_scalar_to_string(cls, value: Any) -> Any:
        # YAML reads `name: 2024` as a number
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("profile_name", mode="before")
    @classmethod
    def _empty_profile(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("retention", mode="before")
    @classmethod
    def _empty_retention(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def max_backups(self) -> int:
        return self.retention.backups

    @property
    def max_age(self) -> RetentionSettings:
        return self.retention

    def summary(self) -> Dict[str, Any]:
        """Flat representation used for log events."""
        return {
            "schedule": self.name,
            "namespace": self.namespace,
            "blueprint": self.blueprint_name,
            "profile": self.profile_name,
            "max_backups": self.retention.backups,
            "years": self.retention.years,
            "months": self.retention.months,
            "days": self.retention.days,
            "hours": self.retention.hours,
            "minutes": self.retention.minutes,
        }
