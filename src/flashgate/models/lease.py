"""Cluster lease model - leader election record."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, Field


class ClusterLease(BaseModel):
    """The single cluster-wide leader election record."""

    name: str
    namespace: str
    holder_identity: str = ""
    lease_duration_seconds: int = Field(..., gt=0)
    acquire_time: Optional[datetime] = None
    renew_time: Optional[datetime] = None
    lease_transitions: int = 0
    # Optimistic concurrency token, bumped by every successful write
    version: int = 0

    def is_held(self) -> bool:
        return self.holder_identity != ""

    def is_held_by(self, identity: str) -> bool:
        return self.is_held() and self.holder_identity == identity

    def expires_at(self) -> Optional[datetime]:
        if self.renew_time is None:
            return None
        return self.renew_time + timedelta(seconds=self.lease_duration_seconds)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the holder failed to renew within the lease duration."""
        if now is None:
            now = datetime.now(timezone.utc)
        expires_at = self.expires_at()
        return expires_at is None or now >= expires_at
