"""Lease-based leader election."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from flashgate.config import Settings
from flashgate.coordination.lease import LeaseLock
from flashgate.engine.errors import LeaderElectionError
from flashgate.models import ClusterLease
from flashgate.observability.metrics import metrics
from flashgate.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ElectionTiming:
    """Lease timing in seconds."""

    lease_duration: float = 60
    renew_deadline: float = 15
    retry_period: float = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElectionTiming":
        return cls(
            lease_duration=settings.lease_duration_seconds,
            renew_deadline=settings.lease_renew_deadline_seconds,
            retry_period=settings.lease_retry_period_seconds,
        )

    def validate(self) -> None:
        if self.lease_duration <= self.renew_deadline:
            raise LeaderElectionError("lease duration must be greater than renew deadline")
        if self.renew_deadline <= self.retry_period:
            raise LeaderElectionError("renew deadline must be greater than retry period")
        if self.retry_period <= 0:
            raise LeaderElectionError("retry period must be greater than zero")


class LeaderElector:
    """
    Acquires and holds a single named lease on behalf of ``identity``.

    A candidate takes the lease when it is absent, unheld or expired. The
    holder renews it every ``retry_period``; if a renewal cannot be completed
    within ``renew_deadline`` leadership is considered lost.
    """

    def __init__(
        self,
        lock: LeaseLock,
        *,
        namespace: str,
        name: str,
        identity: str,
        timing: ElectionTiming,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not identity:
            raise LeaderElectionError("lease lock identity is empty")
        if not name or not namespace:
            raise LeaderElectionError("lease name and namespace are required")
        timing.validate()

        self.lock = lock
        self.namespace = namespace
        self.name = name
        self.identity = identity
        self.timing = timing
        self._clock = clock
        self._sleep = sleep
        self._observed_holder: Optional[str] = None
        self.observed: Optional[ClusterLease] = None

    @property
    def lease_duration_seconds(self) -> int:
        return max(1, int(self.timing.lease_duration))

    def is_leader(self) -> bool:
        return self.observed is not None and self.observed.is_held_by(self.identity)

    def _observe(self, lease: ClusterLease) -> None:
        if lease.holder_identity and lease.holder_identity != self._observed_holder:
            if lease.holder_identity == self.identity:
                logger.info(f"Acquired lease {self.namespace}/{self.name}")
            else:
                logger.info(f"New leader elected: {lease.holder_identity}")
        self._observed_holder = lease.holder_identity or None
        self.observed = lease

    async def try_acquire_or_renew(self) -> bool:
        """Single acquire/renew attempt. Returns True when this candidate holds the lease."""
        now = self._clock()
        current = await self.lock.get(self.namespace, self.name)

        if current is None:
            lease = ClusterLease(
                name=self.name,
                namespace=self.namespace,
                holder_identity=self.identity,
                lease_duration_seconds=self.lease_duration_seconds,
                acquire_time=now,
                renew_time=now,
            )
            if not await self.lock.create(lease):
                return False
            self._observe(lease)
            return True

        if current.is_held() and not current.is_held_by(self.identity) and not current.is_expired(now):
            self._observe(current)
            return False

        if current.is_held_by(self.identity):
            desired = current.model_copy(
                update={"renew_time": now, "lease_duration_seconds": self.lease_duration_seconds}
            )
        else:
            desired = current.model_copy(
                update={
                    "holder_identity": self.identity,
                    "lease_duration_seconds": self.lease_duration_seconds,
                    "acquire_time": now,
                    "renew_time": now,
                    "lease_transitions": current.lease_transitions + 1,
                }
            )

        if not await self.lock.update(desired):
            return False
        self._observe(desired.model_copy(update={"version": desired.version + 1}))
        return True

    async def acquire(self) -> None:
        """Block until the lease is held, retrying every ``retry_period``."""
        logger.info(f"Attempting to acquire lease {self.namespace}/{self.name} as {self.identity}")
        while True:
            try:
                if await self.try_acquire_or_renew():
                    metrics.inc_counter("lease.acquisitions")
                    return
            except Exception as e:
                logger.error(f"Error acquiring lease {self.namespace}/{self.name}: {e}")
            await self._sleep(self.timing.retry_period)

    async def renew(self) -> bool:
        """Renew the lease, retrying until ``renew_deadline`` elapses."""
        attempts = max(1, int(self.timing.renew_deadline // self.timing.retry_period))

        async def attempt_renewal() -> bool:
            for attempt in range(attempts):
                if attempt:
                    await self._sleep(self.timing.retry_period)
                try:
                    if await self.try_acquire_or_renew():
                        return True
                except Exception as e:
                    logger.error(f"Error renewing lease {self.namespace}/{self.name}: {e}")
            return False

        try:
            return await asyncio.wait_for(attempt_renewal(), timeout=self.timing.renew_deadline)
        except asyncio.TimeoutError:
            return False

    async def renew_loop(self, lost: asyncio.Event) -> None:
        """Keep the lease renewed until cancelled; sets ``lost`` if renewal fails."""
        while True:
            await self._sleep(self.timing.retry_period)
            if not await self.renew():
                metrics.inc_counter("lease.lost")
                logger.error(f"Failed to renew lease {self.namespace}/{self.name}: leadership lost")
                lost.set()
                return

    async def release(self) -> bool:
        """Clear the holder identity if this candidate still holds the lease."""
        for _ in range(3):
            current = await self.lock.get(self.namespace, self.name)
            if current is None or not current.is_held_by(self.identity):
                return False
            if await self.lock.update(current.model_copy(update={"holder_identity": ""})):
                logger.info(f"Released lease {self.namespace}/{self.name}")
                self.observed = None
                self._observed_holder = None
                return True
        return False
