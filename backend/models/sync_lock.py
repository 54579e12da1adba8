"""SyncLock model - short-lived mutual-exclusion rows for sync runs."""

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid


class SyncLock(Base):
    """One held lock per (user, lock type).

    The unique constraint is what makes acquisition atomic. A row whose
    ``expires_at`` is in the past is logically free and gets purged before
    the next acquisition attempt.
    """

    __tablename__ = "sync_locks"
    __table_args__ = (
        UniqueConstraint("user_id", "lock_type", name="uix_sync_lock_user_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False)
    lock_type = Column(String, nullable=False)
    acquired_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
