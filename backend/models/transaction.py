"""Transaction model - one ledger entry, manual or synced from Plaid."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Transaction(Base):
    """A single transaction on a FinancialAccount.

    Synced rows are keyed by ``plaid_transaction_id``, which is globally
    unique and is the idempotency key for upsert and delete. Manual rows
    leave it NULL and are never touched by sync.

    Amounts keep Plaid's sign convention: positive is money leaving the
    account.
    """

    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    account_id = Column(String(36), ForeignKey("financial_accounts.id"), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    description = Column(String, nullable=False, default="")
    category = Column(String, nullable=False, default="other")
    transaction_date = Column(Date, nullable=False, index=True)
    is_pending = Column(Boolean, nullable=False, default=False)
    plaid_transaction_id = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    account = relationship("FinancialAccount", back_populates="transactions")
