"""Observability helpers."""

from flashgate.observability.metrics import metrics

__all__ = ["metrics"]
