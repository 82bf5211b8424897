"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from flashgate.models import (
    FlashCluster,
    FlashClusterSpec,
    FlashClusterStatus,
    FlashNode,
    FlashNodeSpec,
    FlashNodeStatus,
)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ApplyClusterRequest(FlashClusterSpec):
    """Desired state for the cluster; replaces any previous request of the same name."""


class ClusterResponse(BaseModel):
    """Cluster request and its sync status."""

    name: str
    namespace: str
    generation: int
    spec: FlashClusterSpec
    status: FlashClusterStatus

    @classmethod
    def from_model(cls, cluster: FlashCluster) -> "ClusterResponse":
        return cls(**cluster.model_dump())


class NodeResponse(BaseModel):
    """Per-node record with its Flashed condition and inventory."""

    name: str
    namespace: str
    generation: int
    spec: FlashNodeSpec
    status: FlashNodeStatus
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, node: FlashNode) -> "NodeResponse":
        return cls(**node.model_dump())


class ListNodesResponse(BaseModel):
    nodes: list[NodeResponse]


class MetricsResponse(BaseModel):
    counters: dict[str, float] = Field(default_factory=dict)
    gauges: dict[str, float] = Field(default_factory=dict)
    histograms: dict[str, dict[str, Any]] = Field(default_factory=dict)
