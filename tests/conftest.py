"""
Pytest fixtures for FlashGate tests.
"""

import asyncio
import os
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure test config is set before importing flashgate modules.
os.environ.setdefault("FLASHGATE_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("FLASHGATE_ENV", "development")
os.environ["FLASHGATE_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from flashgate.db.base import Base
import flashgate.db.tables  # noqa: F401
from flashgate.engine.errors import ToolExecutionError
from flashgate.models import ClusterLease
from flashgate.observability.metrics import metrics
from flashgate.runner import CommandResult

Handler = Union[str, Callable[[list[str], Optional[Path]], str], Exception]


class FakeRunner:
    """
    Records every command and answers from registered handlers.

    Handlers are matched on the longest registered argv prefix. A handler is
    either the output string, a callable returning it, or an exception to raise.
    Unmatched commands succeed with empty output.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self._handlers: dict[tuple[str, ...], Handler] = {}

    def on(self, *prefix: str, handler: Handler = "") -> None:
        self._handlers[tuple(prefix)] = handler

    def fail(self, *prefix: str, returncode: int = 1, output: str = "") -> None:
        self._handlers[tuple(prefix)] = ToolExecutionError(list(prefix), returncode, output)

    def invocations(self, program: str) -> list[list[str]]:
        return [c["args"] for c in self.calls if c["args"][0] == program]

    def _dispatch(self, args: list[str], cwd: Optional[Path]) -> str:
        best: Optional[tuple[str, ...]] = None
        for prefix in self._handlers:
            if tuple(args[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return ""
        handler = self._handlers[best]
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(args, cwd)
        return handler

    async def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        dry_run: bool = False,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append({"args": argv, "cwd": cwd, "dry_run": dry_run})
        if dry_run:
            return CommandResult(args=argv, returncode=0, dry_run=True)
        return CommandResult(args=argv, returncode=0, output=self._dispatch(argv, cwd))

    async def run_streaming(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        dry_run: bool = False,
    ) -> CommandResult:
        return await self.run(args, cwd=cwd, dry_run=dry_run)


class MemoryLeaseLock:
    """In-memory LeaseLock with the same compare-and-swap semantics as the SQL one."""

    def __init__(self):
        self.leases: dict[tuple[str, str], ClusterLease] = {}
        self.writes = 0
        self.fail_gets = False

    async def get(self, namespace: str, name: str) -> Optional[ClusterLease]:
        if self.fail_gets:
            raise ConnectionError("lease store unavailable")
        lease = self.leases.get((namespace, name))
        return lease.model_copy() if lease else None

    async def create(self, lease: ClusterLease) -> bool:
        key = (lease.namespace, lease.name)
        if key in self.leases:
            return False
        self.leases[key] = lease.model_copy()
        self.writes += 1
        return True

    async def update(self, lease: ClusterLease) -> bool:
        key = (lease.namespace, lease.name)
        current = self.leases.get(key)
        if current is None or current.version != lease.version:
            return False
        self.leases[key] = lease.model_copy(update={"version": lease.version + 1})
        self.writes += 1
        return True


class FakeDrainer:
    """Records cordon/drain/uncordon calls; each can be made to fail N times."""

    def __init__(self, cordon_failures: int = 0, drain_failures: int = 0, uncordon_failures: int = 0):
        self.calls: list[str] = []
        self.failures = {
            "cordon": cordon_failures,
            "drain": drain_failures,
            "uncordon": uncordon_failures,
        }

    async def _call(self, name: str) -> None:
        self.calls.append(name)
        if self.failures[name] > 0:
            self.failures[name] -= 1
            raise RuntimeError(f"{name} failed")

    async def cordon(self) -> None:
        await self._call("cordon")

    async def drain(self) -> None:
        await self._call("drain")

    async def uncordon(self) -> None:
        await self._call("uncordon")

    def count(self, name: str) -> int:
        return self.calls.count(name)


class RecordingSleep:
    """Async sleep replacement that records delays and only yields to the loop."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def lease_lock() -> MemoryLeaseLock:
    return MemoryLeaseLock()


@pytest.fixture
def drainer() -> FakeDrainer:
    return FakeDrainer()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def session_factory():
    """In-memory SQLite store with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
