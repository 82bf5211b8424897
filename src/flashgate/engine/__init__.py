"""FlashGate device update engine and error types."""

from flashgate.engine.errors import (
    ArtifactError,
    ChecksumMismatch,
    DrainFailed,
    DrainTimeout,
    EmptyFirmwareURL,
    FlashGateError,
    InvalidSpec,
    KubeAPIError,
    LeaderElectionError,
    LeadershipLost,
    MaintenanceError,
    ModuleUpdateFailed,
    NodeNotFound,
    PreconditionError,
    SymlinkDetected,
    TargetNotFound,
    ToolExecutionError,
    UncordonFailed,
    UpdateResultParseError,
)

__all__ = [
    "ArtifactError",
    "ChecksumMismatch",
    "DrainFailed",
    "DrainTimeout",
    "EmptyFirmwareURL",
    "FlashGateError",
    "InvalidSpec",
    "KubeAPIError",
    "LeaderElectionError",
    "LeadershipLost",
    "MaintenanceError",
    "ModuleUpdateFailed",
    "NodeNotFound",
    "PreconditionError",
    "SymlinkDetected",
    "TargetNotFound",
    "ToolExecutionError",
    "UncordonFailed",
    "UpdateResultParseError",
]
