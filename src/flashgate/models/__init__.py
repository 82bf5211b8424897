"""FlashGate data models."""

from flashgate.models.condition import Condition, find_status_condition, set_status_condition
from flashgate.models.device import DeviceGroup, DeviceRecord, find_device, normalize_mac
from flashgate.models.enums import (
    FLASH_CONDITION,
    ApplyStopReason,
    ConditionStatus,
    FlashConditionReason,
    MaintenancePhase,
    SyncStatus,
    UpdateOutcome,
)
from flashgate.models.lease import ClusterLease
from flashgate.models.node import (
    ClusterNodeSpec,
    FlashCluster,
    FlashClusterSpec,
    FlashClusterStatus,
    FlashNode,
    FlashNodeSpec,
    FlashNodeStatus,
    HssiSpec,
    MacSpec,
)
from flashgate.models.result import UpdateReport, UpdateStepResult
from flashgate.models.target import UpdateTarget

__all__ = [
    "ApplyStopReason",
    "ClusterLease",
    "ClusterNodeSpec",
    "Condition",
    "ConditionStatus",
    "DeviceGroup",
    "DeviceRecord",
    "FLASH_CONDITION",
    "FlashCluster",
    "FlashClusterSpec",
    "FlashClusterStatus",
    "FlashConditionReason",
    "FlashNode",
    "FlashNodeSpec",
    "FlashNodeStatus",
    "HssiSpec",
    "MacSpec",
    "MaintenancePhase",
    "SyncStatus",
    "UpdateOutcome",
    "UpdateReport",
    "UpdateStepResult",
    "UpdateTarget",
    "find_device",
    "find_status_condition",
    "normalize_mac",
    "set_status_condition",
]
