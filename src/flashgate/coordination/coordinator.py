"""Maintenance coordinator - leadership-gated cordon, drain, work and uncordon."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from flashgate.config import Settings
from flashgate.coordination.backoff import Backoff, retry_with_backoff
from flashgate.coordination.drain import NodeDrainer
from flashgate.coordination.election import ElectionTiming, LeaderElector
from flashgate.coordination.lease import LeaseLock
from flashgate.engine.errors import DrainFailed, UncordonFailed
from flashgate.models import MaintenancePhase
from flashgate.observability.metrics import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Receives an event that is set if leadership is lost while the work runs
WorkFn = Callable[[asyncio.Event], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[Any]]


class MaintenanceCoordinator:
    """
    Runs work on this node only while it holds the cluster lease.

    Each ``run`` is one linear pass:
    acquire -> [cordon -> drain] -> work -> uncordon -> release.
    Uncordon is attempted on every exit from the leading state, and an
    uncordon failure is reported even when the work succeeded.
    """

    def __init__(
        self,
        lock: LeaseLock,
        drainer: NodeDrainer,
        *,
        node_name: str,
        namespace: str,
        lease_name: str,
        timing: ElectionTiming = ElectionTiming(),
        backoff: Backoff = Backoff(),
        sleep: SleepFn = asyncio.sleep,
        election_sleep: SleepFn = asyncio.sleep,
    ):
        self.lock = lock
        self.drainer = drainer
        self.node_name = node_name
        self.namespace = namespace
        self.lease_name = lease_name
        self.timing = timing
        self.backoff = backoff
        self._sleep = sleep
        self._election_sleep = election_sleep
        self.phase = MaintenancePhase.NOT_LEADING
        self.history: list[MaintenancePhase] = [self.phase]

    @classmethod
    def from_settings(
        cls, lock: LeaseLock, drainer: NodeDrainer, settings: Settings
    ) -> "MaintenanceCoordinator":
        return cls(
            lock,
            drainer,
            node_name=settings.node_name,
            namespace=settings.namespace,
            lease_name=settings.lease_name,
            timing=ElectionTiming.from_settings(settings),
            backoff=Backoff.from_settings(settings),
        )

    def _set_phase(self, phase: MaintenancePhase) -> None:
        if phase is not self.phase:
            logger.debug(f"Maintenance phase {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.history.append(phase)
        metrics.set_gauge("maintenance.leading", 0 if phase is MaintenancePhase.NOT_LEADING else 1)

    def _new_elector(self) -> LeaderElector:
        return LeaderElector(
            self.lock,
            namespace=self.namespace,
            name=self.lease_name,
            identity=self.node_name,
            timing=self.timing,
            sleep=self._election_sleep,
        )

    async def run(self, work: WorkFn[T], requires_drain: bool = True) -> T:
        """
        Acquire leadership, open the maintenance window and run ``work`` in it.

        Raises:
            LeaderElectionError: Election could not be set up; nothing was drained
            DrainFailed: Cordon/drain kept failing; uncordon was still attempted
            UncordonFailed: Node could not be made schedulable again
        """
        self.history = [self.phase]
        elector = self._new_elector()

        try:
            await elector.acquire()
            logger.info(f"Node {self.node_name} is now leading")

            lost = asyncio.Event()
            renew_task = asyncio.create_task(elector.renew_loop(lost))
            try:
                async with self._maintenance_window(requires_drain):
                    self._set_phase(MaintenancePhase.RUNNING)
                    return await work(lost)
            finally:
                renew_task.cancel()
                try:
                    await renew_task
                except asyncio.CancelledError:
                    pass
        finally:
            await self._release(elector)
            self._set_phase(MaintenancePhase.NOT_LEADING)

    @asynccontextmanager
    async def _maintenance_window(self, requires_drain: bool) -> AsyncIterator[None]:
        try:
            if requires_drain:
                await self._cordon_and_drain()
            yield
        finally:
            self._set_phase(MaintenancePhase.UNCORDONING)
            await self._uncordon()

    async def _cordon_and_drain(self) -> None:
        async def attempt() -> None:
            metrics.inc_counter("drain.attempts")
            self._set_phase(MaintenancePhase.CORDONING)
            await self.drainer.cordon()
            metrics.set_gauge("node.cordoned", 1)
            self._set_phase(MaintenancePhase.DRAINING)
            await self.drainer.drain()

        try:
            await retry_with_backoff(
                attempt, self.backoff, f"Drain of node {self.node_name}", self._sleep
            )
        except Exception as e:
            metrics.inc_counter("drain.failed")
            raise DrainFailed(self.node_name, self.backoff.steps, e) from e

    async def _uncordon(self) -> None:
        async def attempt() -> None:
            metrics.inc_counter("uncordon.attempts")
            await self.drainer.uncordon()
            metrics.set_gauge("node.cordoned", 0)

        try:
            await retry_with_backoff(
                attempt, self.backoff, f"Uncordon of node {self.node_name}", self._sleep
            )
        except Exception as e:
            metrics.inc_counter("uncordon.failed")
            logger.error(f"Failed to uncordon node {self.node_name}: {e}")
            raise UncordonFailed(self.node_name, self.backoff.steps, e) from e

    async def _release(self, elector: LeaderElector) -> None:
        """Clear the lease holder directly; on failure the lease simply expires."""
        try:
            await elector.release()
        except Exception as e:
            logger.error(f"Failed to clear lease holder {self.namespace}/{self.lease_name}: {e}")

