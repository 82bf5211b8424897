"""FlashGate enumerations."""

from enum import Enum

# Name of the status condition tracking firmware updates on a node
FLASH_CONDITION = "Flashed"


class ConditionStatus(str, Enum):
    """Tri-state condition status."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class FlashConditionReason(str, Enum):
    """Reason recorded on the Flashed condition."""

    # Flashing is in an unknown state (election, cordon or drain problem)
    UNKNOWN = "Unknown"
    # Flashing process is in progress
    IN_PROGRESS = "InProgress"
    # Flashing process failed
    FAILED = "Failed"
    # Flashing was not requested
    NOT_REQUESTED = "NotRequested"
    # Flashing process succeeded
    SUCCEEDED = "Succeeded"


class SyncStatus(str, Enum):
    """Cluster config synchronization status."""

    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    IGNORED = "Ignored"


class UpdateOutcome(str, Enum):
    """Per-module outcome reported by the vendor update tool."""

    SUCCESS = "Success"
    FAILURE = "Failure"


class ApplyStopReason(str, Enum):
    """Why the convergence loop for a device stopped."""

    CONVERGED = "converged"
    STEP_LIMIT = "step_limit"
    DRY_RUN = "dry_run"


class MaintenancePhase(str, Enum):
    """Maintenance coordinator state."""

    NOT_LEADING = "not_leading"
    CORDONING = "cordoning"
    DRAINING = "draining"
    RUNNING = "running"
    UNCORDONING = "uncordoning"
