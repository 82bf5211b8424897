"""Node and cluster records - desired state and observed status."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from flashgate.models.condition import Condition, find_status_condition
from flashgate.models.device import DeviceGroup
from flashgate.models.enums import FLASH_CONDITION, SyncStatus
from flashgate.models.target import UpdateTarget


class MacSpec(BaseModel):
    """A network interface selected for update."""

    mac: str = Field(..., pattern=r"^([a-fA-F0-9]{2}[:-]){5}[a-fA-F0-9]{2}$")


class HssiSpec(BaseModel):
    """Vendor firmware package and the interfaces it should be applied to."""

    firmware_url: str = ""
    checksum: Optional[str] = Field(default=None, pattern=r"^[a-fA-F0-9]{32}$")
    macs: list[MacSpec] = Field(default_factory=list)

    @field_validator("checksum", mode="before")
    @classmethod
    def empty_checksum_is_absent(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class FlashNodeSpec(BaseModel):
    """Desired state of a single node."""

    hssi: Optional[HssiSpec] = None
    dry_run: bool = False
    # Allows updating devices without draining the node
    drain_skip: bool = False

    def to_targets(self) -> list[UpdateTarget]:
        if self.hssi is None:
            return []
        return [
            UpdateTarget(
                selector=m.mac,
                firmware_url=self.hssi.firmware_url,
                checksum=self.hssi.checksum,
                dry_run=self.dry_run,
            )
            for m in self.hssi.macs
        ]


class FlashNodeStatus(BaseModel):
    """Observed state of a single node."""

    conditions: list[Condition] = Field(default_factory=list)
    inventory: list[DeviceGroup] = Field(default_factory=list)


class FlashNode(BaseModel):
    """Per-node update record, written by the operator and reconciled by the node daemon."""

    name: str
    namespace: str
    generation: int = 1
    spec: FlashNodeSpec = Field(default_factory=FlashNodeSpec)
    status: FlashNodeStatus = Field(default_factory=FlashNodeStatus)
    updated_at: Optional[datetime] = None

    def flash_condition(self) -> Optional[Condition]:
        return find_status_condition(self.status.conditions, FLASH_CONDITION)

    def is_generation_observed(self) -> bool:
        """True when the current generation was already handled."""
        condition = self.flash_condition()
        return condition is not None and condition.observed_generation == self.generation


class ClusterNodeSpec(BaseModel):
    """Desired devices for one node within a cluster config."""

    node_name: str = Field(..., pattern=r"^[a-z0-9\.\-]+$")
    hssi: Optional[HssiSpec] = None


class FlashClusterSpec(BaseModel):
    """Desired state across the cluster."""

    nodes: list[ClusterNodeSpec] = Field(default_factory=list)
    dry_run: bool = False
    drain_skip: bool = False


class FlashClusterStatus(BaseModel):
    sync_status: Optional[SyncStatus] = None
    last_sync_error: str = ""


class FlashCluster(BaseModel):
    """Cluster-wide update request, split by the operator into FlashNode records."""

    name: str
    namespace: str
    generation: int = 1
    spec: FlashClusterSpec = Field(default_factory=FlashClusterSpec)
    status: FlashClusterStatus = Field(default_factory=FlashClusterStatus)
