"""Periodic node reconcile background task."""

import asyncio
import logging
import random
from typing import Optional

from flashgate.reconcile.node import FlashNodeReconciler

logger = logging.getLogger("flashgate.reconcile_loop")


class ReconcileLoop:
    """
    Polls this node's FlashNode record and reconciles it.

    The interval is jittered by +/-20% so daemons started together do not
    hit the store in lockstep. A reconcile that is in progress (which may
    include a multi-minute flash) is never interrupted by ``stop``; the loop
    exits once it returns.
    """

    def __init__(self, reconciler: FlashNodeReconciler, interval_seconds: float):
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    async def run_once(self) -> None:
        try:
            await self.reconciler.reconcile(
                self.reconciler.namespace, self.reconciler.node_name
            )
        except Exception as e:
            logger.error(f"Reconcile error: {e}", exc_info=True)

    async def _loop(self) -> None:
        logger.info(f"Reconcile loop started (base interval: {self.interval_seconds}s with ±20% jitter)")

        while not self._shutdown_event.is_set():
            await self.run_once()

            jittered_interval = self.interval_seconds * random.uniform(0.8, 1.2)
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=jittered_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Reconcile loop stopped")

    def start(self) -> asyncio.Task:
        """Start the reconcile background task."""
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the loop to stop and wait for the current pass to finish."""
        if self._shutdown_event:
            self._shutdown_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Reconcile loop did not stop in time, cancelling")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass

        self._task = None
        self._shutdown_event = None
