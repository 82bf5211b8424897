"""Bounded exponential retry for node cordon, drain and uncordon."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from flashgate.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class Backoff:
    """Retry schedule: ``steps`` attempts, sleeping ``base * factor**n`` between them."""

    steps: int = 5
    base_seconds: float = 15
    factor: float = 2

    def __post_init__(self):
        if self.steps < 1:
            raise ValueError(f"Backoff steps must be at least 1, got {self.steps}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "Backoff":
        return cls(
            steps=settings.drain_backoff_steps,
            base_seconds=settings.drain_backoff_base_seconds,
            factor=settings.drain_backoff_factor,
        )

    def delays(self) -> list[float]:
        """Sleeps taken between attempts when every attempt fails."""
        return [self.base_seconds * self.factor**n for n in range(self.steps - 1)]


def create_backoff_policy(
    backoff: Backoff,
    description: str,
    sleep: SleepFn = asyncio.sleep,
) -> AsyncRetrying:
    """Build a retrying controller that re-raises the last error once attempts run out."""

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{description} failed (attempt {retry_state.attempt_number}/{backoff.steps}): "
            f"{error} - retrying in {delay:.0f}s"
        )

    return AsyncRetrying(
        stop=stop_after_attempt(backoff.steps),
        wait=wait_exponential(multiplier=backoff.base_seconds, exp_base=backoff.factor),
        retry=retry_if_exception_type(Exception),
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    backoff: Backoff,
    description: str,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Call ``fn`` until it succeeds or the schedule is exhausted."""
    return await create_backoff_policy(backoff, description, sleep)(fn)
