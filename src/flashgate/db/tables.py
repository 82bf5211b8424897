"""SQLAlchemy table definitions."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from flashgate.db.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class FlashNodeTable(Base):
    """Per-node update records."""

    __tablename__ = "flash_nodes"

    namespace: Mapped[str] = mapped_column(String(253), primary_key=True)
    name: Mapped[str] = mapped_column(String(253), primary_key=True)

    # Bumped whenever the spec changes
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    spec: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class FlashClusterTable(Base):
    """Cluster-wide update requests."""

    __tablename__ = "flash_clusters"

    namespace: Mapped[str] = mapped_column(String(253), primary_key=True)
    name: Mapped[str] = mapped_column(String(253), primary_key=True)

    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    spec: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    sync_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_sync_error: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ClusterLeaseTable(Base):
    """Leader election records."""

    __tablename__ = "cluster_leases"

    namespace: Mapped[str] = mapped_column(String(253), primary_key=True)
    name: Mapped[str] = mapped_column(String(253), primary_key=True)

    holder_identity: Mapped[str] = mapped_column(String(253), nullable=False, default="")
    lease_duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    acquire_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    renew_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lease_transitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Compare-and-swap token
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
