"""FinancialAccount model - a bank, card, loan, or investment account."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class FinancialAccount(Base):
    """A user's account, either entered manually or linked through Plaid.

    Linked accounts carry the Plaid account_id plus the owning PlaidItem;
    the pair is unique. Sync only ever touches balance fields, and only
    on linked accounts.
    """

    __tablename__ = "financial_accounts"
    __table_args__ = (
        UniqueConstraint(
            "plaid_item_id", "plaid_account_id", name="uix_plaid_item_account"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    account_type = Column(String, nullable=False, default="other")
    institution_name = Column(String, nullable=True)
    account_number_last4 = Column(String(4), nullable=True)
    current_balance = Column(Numeric(18, 2), nullable=True)
    available_balance = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    is_manual = Column(Boolean, nullable=False, default=True)
    plaid_account_id = Column(String, nullable=True, index=True)
    plaid_item_id = Column(String(36), ForeignKey("plaid_items.id"), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    plaid_item = relationship("PlaidItem", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account")
