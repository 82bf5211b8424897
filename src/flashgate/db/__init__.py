"""Database layer for FlashGate."""

from flashgate.db.base import Base, close_db, get_session, get_session_factory, init_db
from flashgate.db.repositories import (
    ClusterLeaseRepository,
    FlashClusterRepository,
    FlashNodeRepository,
)

__all__ = [
    "Base",
    "ClusterLeaseRepository",
    "FlashClusterRepository",
    "FlashNodeRepository",
    "close_db",
    "get_session",
    "get_session_factory",
    "init_db",
]
