"""Lease record storage used by leader election."""

from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flashgate.db.base import get_session
from flashgate.db.repositories import ClusterLeaseRepository
from flashgate.models import ClusterLease


class LeaseLock(Protocol):
    """
    Storage for the cluster lease.

    ``update`` is a compare-and-swap on ``ClusterLease.version``: it succeeds
    only if the stored version still equals the one that was read, and bumps it.
    """

    async def get(self, namespace: str, name: str) -> Optional[ClusterLease]: ...

    async def create(self, lease: ClusterLease) -> bool: ...

    async def update(self, lease: ClusterLease) -> bool: ...


class SqlLeaseLock:
    """LeaseLock backed by the status store; one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, namespace: str, name: str) -> Optional[ClusterLease]:
        async with get_session(self.session_factory) as session:
            return await ClusterLeaseRepository(session).get(namespace, name)

    async def create(self, lease: ClusterLease) -> bool:
        async with get_session(self.session_factory) as session:
            return await ClusterLeaseRepository(session).create(lease)

    async def update(self, lease: ClusterLease) -> bool:
        async with get_session(self.session_factory) as session:
            return await ClusterLeaseRepository(session).update(lease)
