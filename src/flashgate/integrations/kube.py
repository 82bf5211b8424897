"""Cluster API client for node scheduling and pod eviction."""

import logging
from typing import Any, Optional

import httpx

from flashgate.config import Settings
from flashgate.engine.errors import KubeAPIError

logger = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"


class KubeClient:
    """
    Minimal client for the cluster REST API.

    Usage:
        client = KubeClient.from_settings(settings)
        await client.set_unschedulable("worker-1", True)
        await client.close()
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "KubeClient":
        """Build a client using the in-cluster service account, when present."""
        headers = {"Accept": "application/json"}
        if settings.kube_token_path.exists():
            token = settings.kube_token_path.read_text().strip()
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning(f"No service account token at {settings.kube_token_path}")

        verify: Any = str(settings.kube_ca_path) if settings.kube_ca_path.exists() else True
        client = httpx.AsyncClient(
            base_url=settings.kube_api_url.rstrip("/"),
            headers=headers,
            timeout=settings.kube_request_timeout_seconds,
            transport=httpx.AsyncHTTPTransport(
                retries=settings.kube_transport_retries, verify=verify
            ),
        )
        return cls(client)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise KubeAPIError(method, path, 0, str(e)) from e

        if response.status_code >= 400:
            raise KubeAPIError(method, path, response.status_code, _error_detail(response))
        if not response.content:
            return {}
        return response.json()

    # =========================================================================
    # Nodes
    # =========================================================================

    async def get_node(self, name: str) -> dict[str, Any]:
        return await self._request("GET", f"/api/v1/nodes/{name}")

    async def list_nodes(self, label_selector: Optional[str] = None) -> list[dict[str, Any]]:
        params = {"labelSelector": label_selector} if label_selector else None
        data = await self._request("GET", "/api/v1/nodes", params=params)
        return data.get("items", [])

    async def set_unschedulable(self, name: str, unschedulable: bool) -> dict[str, Any]:
        """Cordon (True) or uncordon (False) a node."""
        return await self._request(
            "PATCH",
            f"/api/v1/nodes/{name}",
            json={"spec": {"unschedulable": unschedulable}},
            headers={"Content-Type": MERGE_PATCH},
        )

    # =========================================================================
    # Pods
    # =========================================================================

    async def list_pods_on_node(self, node_name: str) -> list[dict[str, Any]]:
        data = await self._request(
            "GET", "/api/v1/pods", params={"fieldSelector": f"spec.nodeName={node_name}"}
        )
        return data.get("items", [])

    async def get_pod(self, namespace: str, name: str) -> Optional[dict[str, Any]]:
        """Return the pod, or None when it no longer exists."""
        try:
            return await self._request("GET", f"/api/v1/namespaces/{namespace}/pods/{name}")
        except KubeAPIError as e:
            if e.status_code == 404:
                return None
            raise

    async def evict_pod(
        self,
        namespace: str,
        name: str,
        grace_period_seconds: Optional[int] = None,
    ) -> None:
        """Request a disruption-budget-aware eviction of a pod."""
        body: dict[str, Any] = {
            "apiVersion": "policy/v1",
            "kind": "Eviction",
            "metadata": {"name": name, "namespace": namespace},
        }
        if grace_period_seconds is not None:
            body["deleteOptions"] = {"gracePeriodSeconds": grace_period_seconds}
        await self._request(
            "POST", f"/api/v1/namespaces/{namespace}/pods/{name}/eviction", json=body
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        return data.get("message", response.text)
    return response.text
