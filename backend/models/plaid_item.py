"""PlaidItem model - one linked institution per Plaid access token."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class PlaidItemStatus(str, Enum):
    """Lifecycle status of a linked Item."""

    ACTIVE = "active"
    ERROR = "error"
    PENDING_EXPIRATION = "pending_expiration"
    REVOKED = "revoked"


class PlaidItem(Base):
    """A Plaid Item representing a user's connection to one institution.

    The access token is stored only in encrypted form (see
    ``services.token_vault``). Items are never hard-deleted by sync; an
    explicit disconnect moves them to ``revoked``.
    """

    __tablename__ = "plaid_items"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    item_id = Column(String, unique=True, index=True, nullable=False)
    encrypted_access_token = Column(Text, nullable=False)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)

    status = Column(String, nullable=False, default=PlaidItemStatus.ACTIVE.value)
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    # None until the first successful sync; Plaid then issues opaque cursors
    transactions_cursor = Column(Text, nullable=True)
    last_sync = Column(DateTime, nullable=True)

    # Background historical sync progress (polled by the UI)
    sync_status = Column(String, nullable=True)  # pending | syncing | completed | failed | timeout
    sync_progress = Column(Integer, nullable=False, default=0)
    sync_transaction_count = Column(Integer, nullable=False, default=0)
    sync_message = Column(String, nullable=True)
    sync_error = Column(Text, nullable=True)
    sync_started_at = Column(DateTime, nullable=True)
    sync_completed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    accounts = relationship("FinancialAccount", back_populates="plaid_item")

    @property
    def is_active(self) -> bool:
        return self.status == PlaidItemStatus.ACTIVE.value
