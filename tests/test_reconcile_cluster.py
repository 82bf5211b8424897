"""
Tests for splitting the cluster request into per-node records.
"""

import pytest

from flashgate.db.base import get_session
from flashgate.db.repositories import FlashClusterRepository, FlashNodeRepository
from flashgate.engine.errors import KubeAPIError
from flashgate.models import (
    ClusterNodeSpec,
    FlashCluster,
    FlashClusterSpec,
    HssiSpec,
    MacSpec,
    SyncStatus,
)
from flashgate.reconcile.cluster import ClusterReconciler, split_cluster

NAMESPACE = "flashgate"
CLUSTER = "n5010"
LABEL = "fpga.intel.com/network-accelerator-n5010"
HSSI = HssiSpec(
    firmware_url="http://images.example.com/nvmupdate.tar.gz",
    macs=[MacSpec(mac="64:4c:36:11:1b:a8")],
)


class FakeNodeLister:
    def __init__(self, names):
        self.names = names
        self.selectors = []
        self.error = None

    async def list_nodes(self, label_selector=None):
        self.selectors.append(label_selector)
        if self.error:
            raise self.error
        return [{"metadata": {"name": n}} for n in self.names]


@pytest.fixture
def lister():
    return FakeNodeLister(["node-1", "node-2"])


@pytest.fixture
def reconciler(session_factory, lister):
    return ClusterReconciler(
        session_factory,
        lister,
        namespace=NAMESPACE,
        cluster_name=CLUSTER,
        node_selector_label=LABEL,
    )


async def stored_nodes(session_factory):
    async with get_session(session_factory) as session:
        return await FlashNodeRepository(session).list(NAMESPACE)


def test_split_skips_unlabeled_nodes():
    cluster = FlashCluster(
        name=CLUSTER,
        namespace=NAMESPACE,
        spec=FlashClusterSpec(
            nodes=[ClusterNodeSpec(node_name="node-1", hssi=HSSI), ClusterNodeSpec(node_name="node-9")],
            dry_run=True,
            drain_skip=True,
        ),
    )

    nodes = split_cluster(cluster, {"node-1", "node-2"}, NAMESPACE)

    assert [n.name for n in nodes] == ["node-1"]
    assert nodes[0].spec.hssi == HSSI
    assert nodes[0].spec.dry_run is True
    assert nodes[0].spec.drain_skip is True


@pytest.mark.asyncio
async def test_apply_creates_node_records(reconciler, session_factory, lister):
    spec = FlashClusterSpec(
        nodes=[ClusterNodeSpec(node_name="node-1", hssi=HSSI), ClusterNodeSpec(node_name="node-2")]
    )

    cluster = await reconciler.apply(CLUSTER, spec)

    assert cluster.status.sync_status is SyncStatus.SUCCEEDED
    assert cluster.status.last_sync_error == ""
    assert lister.selectors == [LABEL]
    nodes = await stored_nodes(session_factory)
    assert [n.name for n in nodes] == ["node-1", "node-2"]
    assert nodes[0].spec.hssi == HSSI
    assert nodes[1].spec.hssi is None


@pytest.mark.asyncio
async def test_other_cluster_names_are_ignored(reconciler, session_factory, lister):
    spec = FlashClusterSpec(nodes=[ClusterNodeSpec(node_name="node-1", hssi=HSSI)])

    cluster = await reconciler.apply("other", spec)

    assert cluster.status.sync_status is SyncStatus.IGNORED
    assert "n5010" in cluster.status.last_sync_error
    assert await stored_nodes(session_factory) == []
    assert lister.selectors == []


@pytest.mark.asyncio
async def test_reapply_updates_and_prunes_nodes(reconciler, session_factory):
    await reconciler.apply(
        CLUSTER,
        FlashClusterSpec(
            nodes=[ClusterNodeSpec(node_name="node-1", hssi=HSSI), ClusterNodeSpec(node_name="node-2", hssi=HSSI)]
        ),
    )

    cluster = await reconciler.apply(
        CLUSTER,
        FlashClusterSpec(nodes=[ClusterNodeSpec(node_name="node-1", hssi=HSSI)], dry_run=True),
    )

    assert cluster.generation == 2
    nodes = await stored_nodes(session_factory)
    assert [n.name for n in nodes] == ["node-1"]
    assert nodes[0].generation == 2
    assert nodes[0].spec.dry_run is True


@pytest.mark.asyncio
async def test_unchanged_request_keeps_node_generation(reconciler, session_factory):
    spec = FlashClusterSpec(nodes=[ClusterNodeSpec(node_name="node-1", hssi=HSSI)])

    await reconciler.apply(CLUSTER, spec)
    await reconciler.apply(CLUSTER, spec)

    nodes = await stored_nodes(session_factory)
    assert nodes[0].generation == 1


@pytest.mark.asyncio
async def test_node_listing_failure_is_recorded(reconciler, session_factory, lister):
    lister.error = KubeAPIError("GET", "/api/v1/nodes", 503, "unavailable")

    cluster = await reconciler.apply(CLUSTER, FlashClusterSpec(nodes=[ClusterNodeSpec(node_name="node-1")]))

    assert cluster.status.sync_status is SyncStatus.FAILED
    assert "unavailable" in cluster.status.last_sync_error
    assert await stored_nodes(session_factory) == []

    async with get_session(session_factory) as session:
        stored = await FlashClusterRepository(session).get(NAMESPACE, CLUSTER)
    assert stored.status.sync_status is SyncStatus.FAILED


@pytest.mark.asyncio
async def test_reconcile_missing_cluster(reconciler):
    assert await reconciler.reconcile(NAMESPACE, CLUSTER) is None
