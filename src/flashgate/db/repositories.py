"""Database repositories for FlashGate entities."""

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from flashgate.db.tables import ClusterLeaseTable, FlashClusterTable, FlashNodeTable
from flashgate.engine.errors import NodeNotFound
from flashgate.models import (
    ClusterLease,
    FlashCluster,
    FlashClusterSpec,
    FlashClusterStatus,
    FlashNode,
    FlashNodeSpec,
    FlashNodeStatus,
    SyncStatus,
)
from flashgate.utils.time import ensure_utc, utc_now


class FlashNodeRepository:
    """Repository for per-node update records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, namespace: str, name: str) -> FlashNode | None:
        row = await self._get_row(namespace, name)
        return self._row_to_model(row) if row else None

    async def list(self, namespace: str | None = None) -> list[FlashNode]:
        query = select(FlashNodeTable).order_by(FlashNodeTable.namespace, FlashNodeTable.name)
        if namespace is not None:
            query = query.where(FlashNodeTable.namespace == namespace)
        result = await self.session.execute(query)
        return [self._row_to_model(r) for r in result.scalars().all()]

    async def create(self, node: FlashNode) -> FlashNode:
        now = utc_now()
        row = FlashNodeTable(
            namespace=node.namespace,
            name=node.name,
            generation=node.generation,
            spec=node.spec.model_dump(mode="json"),
            status=node.status.model_dump(mode="json"),
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        return self._row_to_model(row)

    async def update_spec(self, namespace: str, name: str, spec: FlashNodeSpec) -> FlashNode:
        """Replace the desired state; the generation only moves when the spec changes."""
        row = await self._get_row_or_raise(namespace, name)
        new_spec = spec.model_dump(mode="json")
        if row.spec != new_spec:
            row.spec = new_spec
            row.generation = row.generation + 1
            row.updated_at = utc_now()
            await self.session.flush()
        return self._row_to_model(row)

    async def update_status(
        self, namespace: str, name: str, status: FlashNodeStatus
    ) -> FlashNode:
        row = await self._get_row_or_raise(namespace, name)
        row.status = status.model_dump(mode="json")
        row.updated_at = utc_now()
        await self.session.flush()
        return self._row_to_model(row)

    async def delete(self, namespace: str, name: str) -> bool:
        result = await self.session.execute(
            delete(FlashNodeTable).where(
                FlashNodeTable.namespace == namespace,
                FlashNodeTable.name == name,
            )
        )
        return result.rowcount > 0

    async def _get_row(self, namespace: str, name: str) -> FlashNodeTable | None:
        result = await self.session.execute(
            select(FlashNodeTable).where(
                FlashNodeTable.namespace == namespace,
                FlashNodeTable.name == name,
            )
        )
        return result.scalar_one_or_none()

    async def _get_row_or_raise(self, namespace: str, name: str) -> FlashNodeTable:
        row = await self._get_row(namespace, name)
        if row is None:
            raise NodeNotFound(namespace, name)
        return row

    def _row_to_model(self, row: FlashNodeTable) -> FlashNode:
        """Convert database row to model."""
        return FlashNode(
            name=row.name,
            namespace=row.namespace,
            generation=row.generation,
            spec=FlashNodeSpec.model_validate(row.spec or {}),
            status=FlashNodeStatus.model_validate(row.status or {}),
            updated_at=ensure_utc(row.updated_at),
        )


class FlashClusterRepository:
    """Repository for cluster-wide update requests."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, namespace: str, name: str) -> FlashCluster | None:
        row = await self._get_row(namespace, name)
        return self._row_to_model(row) if row else None

    async def upsert(self, namespace: str, name: str, spec: FlashClusterSpec) -> FlashCluster:
        """Create or replace the desired state of a cluster request."""
        now = utc_now()
        new_spec = spec.model_dump(mode="json")
        row = await self._get_row(namespace, name)
        if row is None:
            row = FlashClusterTable(
                namespace=namespace,
                name=name,
                generation=1,
                spec=new_spec,
                sync_status=None,
                last_sync_error="",
                created_at=now,
                updated_at=now,
            )
            self.session.add(row)
        elif row.spec != new_spec:
            row.spec = new_spec
            row.generation = row.generation + 1
            row.updated_at = now
        await self.session.flush()
        return self._row_to_model(row)

    async def update_status(
        self, namespace: str, name: str, status: FlashClusterStatus
    ) -> FlashCluster | None:
        row = await self._get_row(namespace, name)
        if row is None:
            return None
        row.sync_status = status.sync_status.value if status.sync_status else None
        row.last_sync_error = status.last_sync_error
        row.updated_at = utc_now()
        await self.session.flush()
        return self._row_to_model(row)

    async def _get_row(self, namespace: str, name: str) -> FlashClusterTable | None:
        result = await self.session.execute(
            select(FlashClusterTable).where(
                FlashClusterTable.namespace == namespace,
                FlashClusterTable.name == name,
            )
        )
        return result.scalar_one_or_none()

    def _row_to_model(self, row: FlashClusterTable) -> FlashCluster:
        return FlashCluster(
            name=row.name,
            namespace=row.namespace,
            generation=row.generation,
            spec=FlashClusterSpec.model_validate(row.spec or {}),
            status=FlashClusterStatus(
                sync_status=SyncStatus(row.sync_status) if row.sync_status else None,
                last_sync_error=row.last_sync_error or "",
            ),
        )


class ClusterLeaseRepository:
    """Repository for leader election records, written with compare-and-swap."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, namespace: str, name: str) -> ClusterLease | None:
        result = await self.session.execute(
            select(ClusterLeaseTable).where(
                ClusterLeaseTable.namespace == namespace,
                ClusterLeaseTable.name == name,
            )
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def create(self, lease: ClusterLease) -> bool:
        """Insert a new record; False if another candidate created it first."""
        self.session.add(
            ClusterLeaseTable(
                namespace=lease.namespace,
                name=lease.name,
                holder_identity=lease.holder_identity,
                lease_duration_seconds=lease.lease_duration_seconds,
                acquire_time=lease.acquire_time,
                renew_time=lease.renew_time,
                lease_transitions=lease.lease_transitions,
                version=lease.version,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            return False
        return True

    async def update(self, lease: ClusterLease) -> bool:
        """
        Write ``lease`` if the stored version still equals ``lease.version``.

        The stored version is bumped on success. Returns False on conflict.
        """
        result = await self.session.execute(
            update(ClusterLeaseTable)
            .where(
                ClusterLeaseTable.namespace == lease.namespace,
                ClusterLeaseTable.name == lease.name,
                ClusterLeaseTable.version == lease.version,
            )
            .values(
                holder_identity=lease.holder_identity,
                lease_duration_seconds=lease.lease_duration_seconds,
                acquire_time=lease.acquire_time,
                renew_time=lease.renew_time,
                lease_transitions=lease.lease_transitions,
                version=lease.version + 1,
            )
        )
        return result.rowcount == 1

    def _row_to_model(self, row: ClusterLeaseTable) -> ClusterLease:
        return ClusterLease(
            name=row.name,
            namespace=row.namespace,
            holder_identity=row.holder_identity,
            lease_duration_seconds=row.lease_duration_seconds,
            acquire_time=ensure_utc(row.acquire_time),
            renew_time=ensure_utc(row.renew_time),
            lease_transitions=row.lease_transitions,
            version=row.version,
        )
