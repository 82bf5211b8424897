"""External service integrations."""

from flashgate.integrations.kube import KubeClient

__all__ = ["KubeClient"]
