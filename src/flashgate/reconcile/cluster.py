"""Cluster reconciler - splits the cluster request into per-node records."""

import logging
from typing import Any, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flashgate.db.base import get_session
from flashgate.db.repositories import FlashClusterRepository, FlashNodeRepository
from flashgate.engine.errors import FlashGateError
from flashgate.models import (
    FlashCluster,
    FlashClusterSpec,
    FlashClusterStatus,
    FlashNode,
    FlashNodeSpec,
    SyncStatus,
)

logger = logging.getLogger(__name__)


class NodeLister(Protocol):
    async def list_nodes(self, label_selector: Optional[str] = None) -> list[dict[str, Any]]: ...


def split_cluster(
    cluster: FlashCluster, node_names: set[str], namespace: str
) -> list[FlashNode]:
    """One FlashNode per requested node that is present among the labeled cluster nodes."""
    nodes = []
    for requested in cluster.spec.nodes:
        if requested.node_name not in node_names:
            logger.info(f"Node {requested.node_name} is not a labeled accelerator node - skipping")
            continue
        nodes.append(
            FlashNode(
                name=requested.node_name,
                namespace=namespace,
                spec=FlashNodeSpec(
                    hssi=requested.hssi,
                    dry_run=cluster.spec.dry_run,
                    drain_skip=cluster.spec.drain_skip,
                ),
            )
        )
    return nodes


class ClusterReconciler:
    """Honors exactly one cluster request name; any other is marked ``Ignored``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        nodes: NodeLister,
        *,
        namespace: str,
        cluster_name: str,
        node_selector_label: str,
    ):
        self.session_factory = session_factory
        self.nodes = nodes
        self.namespace = namespace
        self.cluster_name = cluster_name
        self.node_selector_label = node_selector_label

    async def apply(self, name: str, spec: FlashClusterSpec) -> Optional[FlashCluster]:
        """Store a cluster request and reconcile it right away."""
        async with get_session(self.session_factory) as session:
            await FlashClusterRepository(session).upsert(self.namespace, name, spec)
        return await self.reconcile(self.namespace, name)

    async def reconcile(self, namespace: str, name: str) -> Optional[FlashCluster]:
        async with get_session(self.session_factory) as session:
            cluster = await FlashClusterRepository(session).get(namespace, name)
        if cluster is None:
            logger.info(f"FlashCluster {namespace}/{name} not found")
            return None

        if namespace != self.namespace or name != self.cluster_name:
            logger.info(f"FlashCluster {namespace}/{name} is not the expected one - ignoring")
            return await self._update_status(
                cluster,
                SyncStatus.IGNORED,
                f"Only FlashCluster with name '{self.cluster_name}' and namespace "
                f"'{self.namespace}' are handled",
            )

        await self._update_status(cluster, SyncStatus.IN_PROGRESS, "")
        try:
            labeled = await self.nodes.list_nodes(label_selector=self.node_selector_label)
            node_names = {n.get("metadata", {}).get("name", "") for n in labeled}
            desired = split_cluster(cluster, node_names, self.namespace)
            await self._sync_nodes(desired)
        except FlashGateError as e:
            logger.error(f"Cluster split of {name} failed: {e.message}")
            return await self._update_status(cluster, SyncStatus.FAILED, e.message)

        return await self._update_status(cluster, SyncStatus.SUCCEEDED, "")

    async def _sync_nodes(self, desired: list[FlashNode]) -> None:
        desired_names = {n.name for n in desired}
        async with get_session(self.session_factory) as session:
            repo = FlashNodeRepository(session)
            for existing in await repo.list(self.namespace):
                if existing.name not in desired_names:
                    logger.info(f"Deleting FlashNode {existing.name}")
                    await repo.delete(self.namespace, existing.name)

            for node in desired:
                if await repo.get(node.namespace, node.name) is None:
                    logger.info(f"Creating FlashNode {node.name}")
                    await repo.create(node)
                else:
                    logger.debug(f"Updating FlashNode {node.name}")
                    await repo.update_spec(node.namespace, node.name, node.spec)

    async def _update_status(
        self, cluster: FlashCluster, sync_status: SyncStatus, error: str
    ) -> FlashCluster:
        status = FlashClusterStatus(sync_status=sync_status, last_sync_error=error)
        async with get_session(self.session_factory) as session:
            updated = await FlashClusterRepository(session).update_status(
                cluster.namespace, cluster.name, status
            )
        return updated or cluster.model_copy(update={"status": status})
