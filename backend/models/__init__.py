"""SQLAlchemy ORM models."""

from .account import FinancialAccount
from .plaid_item import PlaidItem, PlaidItemStatus
from .sync_lock import SyncLock
from .transaction import Transaction
from .webhook_event import WebhookEvent
from .utils import generate_uuid

__all__ = ["FinancialAccount", "PlaidItem", "PlaidItemStatus", "SyncLock", "Transaction", "WebhookEvent", "generate_uuid"]
