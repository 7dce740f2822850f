"""
Abstract interfaces for the resource store.

The retention engine talks to the cluster only through these interfaces, so
the Kubernetes implementation can be swapped for an in-memory store in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from taweret.storage.retention_models import BackupRecord


class ResourceStoreError(Exception):
    """A resource store call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResourceNotFoundError(ResourceStoreError):
    """The requested resource does not exist."""


@dataclass
class ActionStatus:
    """Progress of a deletion request as reported by the action executor."""
    state: str
    error_message: Optional[str] = None


class RecordLister(ABC):
    """Enumerates backup records."""

    @abstractmethod
    async def list_backups(self, namespace: str) -> List[BackupRecord]:
        """
        List every backup record in a namespace.

        Raises:
            ListError: If the records cannot be enumerated or decoded
        """
        pass


class DeletionClient(ABC):
    """Resource store operations used by the deletion protocol."""

    @abstractmethod
    async def exists(self, namespace: str, name: str) -> bool:
        """Check whether a deletion request with this name exists."""
        pass

    @abstractmethod
    async def create(self, namespace: str, request: Dict[str, Any]) -> str:
        """
        Submit a deletion request.

        Returns:
            str: Name of the created resource
        """
        pass

    @abstractmethod
    async def get_status(self, namespace: str, name: str) -> ActionStatus:
        """Fetch the current status of a deletion request."""
        pass

    @abstractmethod
    async def delete_resource(self, namespace: str, name: str) -> None:
        """
        Remove a resource.

        Raises:
            ResourceNotFoundError: If the resource does not exist
        """
        pass


class ConfigMapSource(ABC):
    """Supplies raw ConfigMap data for backup configuration loading."""

    @abstractmethod
    async def list_config_maps(self, namespace: str) -> List[Dict[str, Any]]:
        """
        List ConfigMaps in a namespace.

        Returns:
            List of dictionaries with 'name' and 'data' keys
        """
        pass
