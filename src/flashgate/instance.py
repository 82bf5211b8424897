"""Node identity detection."""

import logging
import os
import socket

logger = logging.getLogger(__name__)


def detect_node_name() -> str:
    """
    Auto-detect the name of the node this daemon runs on.

    Checks in priority order:
    1. NODE_NAME (downward API field ref to spec.nodeName)
    2. FLASHGATE_NODE_NAME (explicitly set)
    3. Fallback: host name

    Returns:
        Node name string
    """
    node_name = os.environ.get("NODE_NAME")
    if node_name:
        logger.info(f"Detected node name from downward API: {node_name}")
        return node_name

    explicit = os.environ.get("FLASHGATE_NODE_NAME")
    if explicit:
        logger.info(f"Using explicit node name: {explicit}")
        return explicit

    hostname = socket.gethostname()
    logger.warning(f"No node name configured, falling back to host name: {hostname}")
    return hostname


def validate_node_name(node_name: str) -> None:
    """
    Validate the node name is usable as a lease identity.

    Raises:
        RuntimeError: If node name is empty or not a valid object name
    """
    if not node_name:
        raise RuntimeError(
            "Node name is empty. Set NODE_NAME from the pod spec (fieldRef spec.nodeName) "
            "or FLASHGATE_NODE_NAME explicitly."
        )
    if node_name != node_name.lower() or " " in node_name:
        raise RuntimeError(
            f"Node name '{node_name}' is not a valid object name: "
            f"it is used as the lease holder identity and must be lowercase without spaces"
        )
    logger.info(f"Node name validated: {node_name}")
