"""Background tasks for FlashGate."""

from flashgate.tasks.reconcile_loop import ReconcileLoop

__all__ = ["ReconcileLoop"]
