"""REST API router."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from flashgate import __version__
from flashgate.api.deps import get_cluster_reconciler, get_db_session, verify_api_key
from flashgate.api.schemas import (
    ApplyClusterRequest,
    ClusterResponse,
    HealthResponse,
    ListNodesResponse,
    MetricsResponse,
    NodeResponse,
)
from flashgate.config import settings
from flashgate.db.repositories import FlashClusterRepository, FlashNodeRepository
from flashgate.observability.metrics import metrics
from flashgate.reconcile.cluster import ClusterReconciler

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics():
    return MetricsResponse(**metrics.snapshot())


# ============================================================================
# Cluster requests
# ============================================================================


@router.put("/clusters/{name}", response_model=ClusterResponse)
async def apply_cluster(
    name: str,
    request: ApplyClusterRequest,
    reconciler: ClusterReconciler = Depends(get_cluster_reconciler),
):
    """
    Store the cluster request and split it into per-node records.

    Only the configured cluster name is acted upon; any other name is stored
    with sync status ``Ignored``.
    """
    cluster = await reconciler.apply(name, request)
    if cluster is None:
        raise HTTPException(status_code=404, detail=f"FlashCluster not found: {name}")
    return ClusterResponse.from_model(cluster)


@router.get("/clusters/{name}", response_model=ClusterResponse)
async def get_cluster(
    name: str,
    session: AsyncSession = Depends(get_db_session),
):
    cluster = await FlashClusterRepository(session).get(settings.namespace, name)
    if cluster is None:
        raise HTTPException(status_code=404, detail=f"FlashCluster not found: {name}")
    return ClusterResponse.from_model(cluster)


# ============================================================================
# Node records
# ============================================================================


@router.get("/nodes", response_model=ListNodesResponse)
async def list_nodes(
    session: AsyncSession = Depends(get_db_session),
):
    nodes = await FlashNodeRepository(session).list(settings.namespace)
    return ListNodesResponse(nodes=[NodeResponse.from_model(n) for n in nodes])


@router.get("/nodes/{name}", response_model=NodeResponse)
async def get_node(
    name: str,
    session: AsyncSession = Depends(get_db_session),
):
    """Get a node record with its Flashed condition and device inventory."""
    node = await FlashNodeRepository(session).get(settings.namespace, name)
    if node is None:
        raise HTTPException(status_code=404, detail=f"FlashNode not found: {settings.namespace}/{name}")
    return NodeResponse.from_model(node)
