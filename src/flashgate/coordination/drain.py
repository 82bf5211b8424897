"""Node cordon, drain and uncordon against the cluster API."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from flashgate.engine.errors import DrainTimeout, KubeAPIError
from flashgate.integrations.kube import KubeClient

logger = logging.getLogger(__name__)

MIRROR_POD_ANNOTATION = "kubernetes.io/config.mirror"


class NodeDrainer(Protocol):
    """Scheduling operations the maintenance window needs on the local node."""

    async def cordon(self) -> None: ...

    async def drain(self) -> None: ...

    async def uncordon(self) -> None: ...


def is_daemonset_pod(pod: dict[str, Any]) -> bool:
    owners = pod.get("metadata", {}).get("ownerReferences") or []
    return any(o.get("kind") == "DaemonSet" and o.get("controller") for o in owners)


def is_mirror_pod(pod: dict[str, Any]) -> bool:
    annotations = pod.get("metadata", {}).get("annotations") or {}
    return MIRROR_POD_ANNOTATION in annotations


def pod_key(pod: dict[str, Any]) -> str:
    metadata = pod.get("metadata", {})
    return f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"


class KubeNodeDrainer:
    """
    Drains a node through the eviction API.

    DaemonSet-owned and mirror pods are left in place; every other pod,
    including those with local storage, is evicted using its own grace period.
    A drain attempt fails with ``DrainTimeout`` if pods are still present
    after ``timeout_seconds``.
    """

    def __init__(
        self,
        kube: KubeClient,
        node_name: str,
        *,
        timeout_seconds: float = 90,
        poll_interval_seconds: float = 5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.kube = kube
        self.node_name = node_name
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._pending: list[str] = []

    async def cordon(self) -> None:
        logger.info(f"Cordoning node {self.node_name}")
        await self.kube.set_unschedulable(self.node_name, True)

    async def uncordon(self) -> None:
        logger.info(f"Uncordoning node {self.node_name}")
        await self.kube.set_unschedulable(self.node_name, False)

    async def drain(self) -> None:
        logger.info(f"Draining node {self.node_name}")
        self._pending = []
        try:
            await asyncio.wait_for(self._drain(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise DrainTimeout(self.node_name, self.timeout_seconds, self._pending)
        logger.info(f"Node {self.node_name} drained")

    async def _drain(self) -> None:
        pods = [
            p
            for p in await self.kube.list_pods_on_node(self.node_name)
            if not is_daemonset_pod(p) and not is_mirror_pod(p)
        ]
        self._pending = [pod_key(p) for p in pods]
        for pod in pods:
            await self._evict(pod)
        for pod in pods:
            await self._wait_for_deletion(pod)
            self._pending.remove(pod_key(pod))

    async def _evict(self, pod: dict[str, Any]) -> None:
        metadata = pod["metadata"]
        while True:
            try:
                await self.kube.evict_pod(metadata["namespace"], metadata["name"])
                logger.debug(f"Evicted pod {pod_key(pod)}")
                return
            except KubeAPIError as e:
                if e.status_code == 404:
                    return
                if e.status_code != 429:
                    raise
                # Disruption budget does not allow the eviction yet
                logger.info(f"Eviction of {pod_key(pod)} refused, retrying: {e.detail}")
                await self._sleep(self.poll_interval_seconds)

    async def _wait_for_deletion(self, pod: dict[str, Any]) -> None:
        metadata = pod["metadata"]
        uid: Optional[str] = metadata.get("uid")
        while True:
            current = await self.kube.get_pod(metadata["namespace"], metadata["name"])
            if current is None or current.get("metadata", {}).get("uid") != uid:
                return
            await self._sleep(self.poll_interval_seconds)
