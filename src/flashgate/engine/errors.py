"""FlashGate errors."""

from typing import Sequence


class FlashGateError(Exception):
    """Base error for FlashGate operations."""

    def __init__(self, message: str, code: str = "FLASHGATE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# =============================================================================
# Preconditions - fatal for the current attempt, never retried internally
# =============================================================================


class PreconditionError(FlashGateError):
    """Declared update cannot be carried out as specified."""


class InvalidSpec(PreconditionError):
    """Node spec is malformed."""

    def __init__(self, message: str):
        super().__init__(message, "INVALID_SPEC")


class EmptyFirmwareURL(PreconditionError):
    """No firmware package URL was declared."""

    def __init__(self):
        super().__init__("Empty firmware URL", "EMPTY_FIRMWARE_URL")


class TargetNotFound(PreconditionError):
    """Selector does not resolve to an attached device."""

    def __init__(self, selector: str):
        super().__init__(f"MAC not found: {selector}", "TARGET_NOT_FOUND")
        self.selector = selector


class ChecksumMismatch(PreconditionError):
    """Downloaded artifact digest differs from the declared one."""

    def __init__(self, url: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch in downloaded file: {url} (expected {expected}, got {actual})",
            "CHECKSUM_MISMATCH",
        )
        self.url = url
        self.expected = expected
        self.actual = actual


# =============================================================================
# Artifacts and external tools
# =============================================================================


class ArtifactError(FlashGateError):
    """Artifact could not be fetched or staged."""

    def __init__(self, message: str):
        super().__init__(message, "ARTIFACT_ERROR")


class SymlinkDetected(ArtifactError):
    """Staged package contains a symbolic link where a file is expected."""

    def __init__(self, path: str):
        super().__init__(f"Symbolic link detected in update package: {path}")
        self.code = "SYMLINK_DETECTED"
        self.path = path


class ToolExecutionError(FlashGateError):
    """External command exited unsuccessfully."""

    def __init__(self, args: Sequence[str], returncode: int, output: str = ""):
        super().__init__(
            f"Command {' '.join(args)!r} failed with exit code {returncode}",
            "TOOL_EXECUTION_FAILED",
        )
        self.args_ = list(args)
        self.returncode = returncode
        self.output = output


class UpdateResultParseError(FlashGateError):
    """Vendor tool result file is missing or malformed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Unable to read update result {path}: {reason}", "UPDATE_RESULT_INVALID")
        self.path = path


class ModuleUpdateFailed(FlashGateError):
    """A firmware module reported a non-success result."""

    def __init__(self, selector: str, module_type: str, module_version: str, result: str):
        super().__init__(
            f"Invalid update result: {result} for MAC: {selector} "
            f"module {module_type} version {module_version}",
            "MODULE_UPDATE_FAILED",
        )
        self.selector = selector
        self.module_type = module_type
        self.module_version = module_version
        self.result = result


class LeadershipLost(FlashGateError):
    """Leadership ended before all devices were processed."""

    def __init__(self, remaining: Sequence[str]):
        super().__init__(
            f"Leadership lost before updating: {', '.join(remaining)}",
            "LEADERSHIP_LOST",
        )
        self.remaining = list(remaining)


# =============================================================================
# Maintenance window - election, cordon, drain, uncordon
# =============================================================================


class MaintenanceError(FlashGateError):
    """Failure around leader election or node (un)cordon/drain."""


class LeaderElectionError(MaintenanceError):
    """Leader election could not be set up."""

    def __init__(self, message: str):
        super().__init__(message, "LEADER_ELECTION_FAILED")


class DrainTimeout(MaintenanceError):
    """Pods were not gone within the per-attempt drain timeout."""

    def __init__(self, node_name: str, timeout_seconds: float, pending: Sequence[str] = ()):
        super().__init__(
            f"Drain of node {node_name} timed out after {timeout_seconds}s "
            f"(pending pods: {', '.join(pending) or 'unknown'})",
            "DRAIN_TIMEOUT",
        )
        self.node_name = node_name
        self.pending = list(pending)


class DrainFailed(MaintenanceError):
    """Cordon or drain kept failing until the retry budget was exhausted."""

    def __init__(self, node_name: str, attempts: int, cause: Exception):
        super().__init__(
            f"Failed to drain node {node_name} after {attempts} attempts: {cause}",
            "DRAIN_FAILED",
        )
        self.node_name = node_name
        self.attempts = attempts
        self.cause = cause


class UncordonFailed(MaintenanceError):
    """Node could not be made schedulable again."""

    def __init__(self, node_name: str, attempts: int, cause: Exception):
        super().__init__(
            f"Failed to uncordon node {node_name} after {attempts} attempts: {cause}",
            "UNCORDON_FAILED",
        )
        self.node_name = node_name
        self.attempts = attempts
        self.cause = cause


# =============================================================================
# Cluster API and store
# =============================================================================


class KubeAPIError(FlashGateError):
    """Cluster API returned an error response."""

    def __init__(self, method: str, path: str, status_code: int, detail: str = ""):
        super().__init__(
            f"{method} {path} failed with status {status_code}: {detail}",
            "KUBE_API_ERROR",
        )
        self.method = method
        self.path = path
        self.status_code = status_code
        self.detail = detail


class NodeNotFound(FlashGateError):
    """FlashNode record does not exist."""

    def __init__(self, namespace: str, name: str):
        super().__init__(f"FlashNode not found: {namespace}/{name}", "NODE_NOT_FOUND")
        self.namespace = namespace
        self.name = name
