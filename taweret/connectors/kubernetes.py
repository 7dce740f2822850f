"""
Kubernetes resource store client.

This module implements the resource store interfaces against the Kubernetes
REST API, reading Kanister ActionSets and ConfigMaps with the in-cluster
service account.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from taweret.config.settings import KubernetesConfig
from taweret.connectors.base import (
    ActionStatus, ConfigMapSource, DeletionClient, RecordLister,
    ResourceNotFoundError, ResourceStoreError,
)
from taweret.storage.retention_errors import ListError, RecordDecodeError
from taweret.storage.retention_ingest import decode_actionset
from taweret.storage.retention_models import BackupRecord

logger = structlog.get_logger(__name__)

ACTIONSET_API = "/apis/cr.kanister.io/v1alpha1"


class KubernetesClient(RecordLister, DeletionClient, ConfigMapSource):
    """
    Resource store backed by the Kubernetes API.

    Transport errors are retried with exponential backoff; HTTP error
    responses are not.
    """

    def __init__(self, config: KubernetesConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the client.

        Args:
            config: Kubernetes connection settings
            transport: Optional httpx transport, used in place of the network
        """
        self.config = config
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    def _auth_headers(self) -> Dict[str, str]:
        token_path = Path(self.config.token_path)
        if not token_path.exists():
            return {}
        return {"Authorization": f"Bearer {token_path.read_text().strip()}"}

    async def connect(self) -> None:
        """Open the HTTP client."""
        ca_path = Path(self.config.ca_path)
        self.client = httpx.AsyncClient(
            base_url=self.config.api_server,
            headers={"Accept": "application/json", **self._auth_headers()},
            verify=str(ca_path) if ca_path.exists() else True,
            timeout=self.config.request_timeout_seconds,
            transport=self._transport,
        )
        logger.info("Kubernetes client connected", api_server=self.config.api_server)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> "KubernetesClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Make an API request, retrying transport failures."""
        if not self.client:
            raise RuntimeError("Kubernetes client is not connected")

        retryer = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.retry_backoff_seconds, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        )
        try:
            response = await retryer(self.client.request, method, path, **kwargs)
        except httpx.TransportError as e:
            raise ResourceStoreError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise ResourceNotFoundError(f"{method} {path}: not found", status_code=404)
        if response.status_code >= 400:
            raise ResourceStoreError(
                f"{method} {path} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response.json() if response.content else {}

    def _actionsets_path(self, namespace: str, name: Optional[str] = None) -> str:
        path = f"{ACTIONSET_API}/namespaces/{namespace}/actionsets"
        return f"{path}/{name}" if name else path

    async def list_backups(self, namespace: str) -> List[BackupRecord]:
        try:
            payload = await self._request("GET", self._actionsets_path(namespace))
        except ResourceStoreError as e:
            raise ListError(f"error listing actionsets in {namespace}: {e}") from e

        backups = []
        for item in payload.get("items", []):
            try:
                record = decode_actionset(item)
            except RecordDecodeError as e:
                raise ListError(f"error decoding actionset {e.resource or '<unnamed>'}: {e}") from e
            if record is not None:
                backups.append(record)

        logger.debug("Backup actionsets listed", namespace=namespace, backups=len(backups))
        return backups

    async def exists(self, namespace: str, name: str) -> bool:
        try:
            await self._request("GET", self._actionsets_path(namespace, name))
        except ResourceNotFoundError:
            return False
        return True

    async def create(self, namespace: str, request: Dict[str, Any]) -> str:
        created = await self._request("POST", self._actionsets_path(namespace), json=request)
        return created.get("metadata", {}).get("name", request["metadata"]["name"])

    async def get_status(self, namespace: str, name: str) -> ActionStatus:
        actionset = await self._request("GET", self._actionsets_path(namespace, name))
        status = actionset.get("status") or {}
        error = status.get("error") or {}
        return ActionStatus(
            state=status.get("state") or "",
            error_message=error.get("message") if isinstance(error, dict) else None,
        )

    async def delete_resource(self, namespace: str, name: str) -> None:
        await self._request("DELETE", self._actionsets_path(namespace, name))

    async def list_config_maps(self, namespace: str) -> List[Dict[str, Any]]:
        payload = await self._request("GET", f"/api/v1/namespaces/{namespace}/configmaps")
        return [
            {
                "name": item.get("metadata", {}).get("name", ""),
                "data": item.get("data") or {},
            }
            for item in payload.get("items", [])
        ]


def create_kubernetes_client(config: KubernetesConfig) -> KubernetesClient:
    """Create a new KubernetesClient instance."""
    return KubernetesClient(config)
