"""
Error taxonomy for the retention system.

Every error raised while evaluating a schedule derives from RetentionError so
the evaluation cycle can isolate one schedule's failure from its siblings.
"""

from typing import Optional


class RetentionError(Exception):
    """Base class for retention evaluation failures."""

    def __init__(self, message: str, schedule: Optional[str] = None):
        super().__init__(message)
        self.schedule = schedule


class ConfigParseError(RetentionError):
    """A backup configuration document could not be decoded."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class ListError(RetentionError):
    """Backup records could not be enumerated."""


class RecordDecodeError(RetentionError):
    """A raw ActionSet object is missing a field or has the wrong shape."""

    def __init__(self, field: str, message: str, resource: Optional[str] = None):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.resource = resource


class DeletionError(RetentionError):
    """Base class for failures while deleting a single backup."""

    def __init__(self, message: str, backup_name: str, schedule: Optional[str] = None):
        super().__init__(message, schedule)
        self.backup_name = backup_name


class DeletionRequestError(DeletionError):
    """The deletion request could not be checked for or submitted."""


class DeletionStatusError(DeletionError):
    """The deletion request status could not be fetched while polling."""


class DeletionTimeoutError(DeletionError):
    """The deletion request did not reach a terminal state in time."""


class FinalizeDeleteError(DeletionError):
    """The original backup resource could not be removed."""
