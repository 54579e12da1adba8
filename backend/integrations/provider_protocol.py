"""Aggregation provider protocol and normalized data types.

The sync services depend only on the types and the ``AggregationClient``
protocol defined here, never on the plaid-python SDK directly. Tests
substitute a scripted fake client that satisfies the same protocol.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Protocol


@dataclass
class ProviderAccount:
    """Normalized account data, including the latest balances."""

    account_id: str  # Provider's external ID for the account
    name: str
    type: str  # e.g., "depository", "credit", "loan", "investment"
    subtype: str | None = None  # e.g., "checking", "credit card", "401k"
    mask: str | None = None  # Last 2-4 digits of the account number
    official_name: str | None = None
    current_balance: Decimal | None = None
    available_balance: Decimal | None = None
    iso_currency_code: str | None = None


@dataclass
class ProviderTransaction:
    """Normalized transaction from the provider's change feed."""

    transaction_id: str  # Globally unique; idempotency key for upsert/delete
    account_id: str  # Provider's account ID
    amount: Decimal  # Positive = money leaving the account
    date: date
    name: str
    merchant_name: str | None = None
    category: list[str] = field(default_factory=list)  # Most general first
    pending: bool = False
    iso_currency_code: str | None = None

    @property
    def description(self) -> str:
        """Merchant name when known, else the raw statement name."""
        return self.merchant_name or self.name


@dataclass
class RemovedTransaction:
    """A transaction the provider has withdrawn from the feed."""

    transaction_id: str
    account_id: str | None = None


@dataclass
class TransactionSyncPage:
    """One page of the cursor-paginated transaction change feed."""

    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[RemovedTransaction] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


@dataclass
class ProviderItem:
    """Metadata about a linked Item."""

    item_id: str
    institution_id: str | None = None
    error_code: str | None = None
    consent_expiration_time: str | None = None


class AggregationClient(Protocol):
    """What the sync services need from an aggregation provider.

    Implementations raise subclasses of
    :class:`~integrations.exceptions.ProviderError` so callers can tell
    transient failures from permanent ones without inspecting raw
    provider responses.
    """

    @property
    def provider_name(self) -> str:
        ...

    def is_configured(self) -> bool:
        ...

    def create_link_token(self, user_id: str) -> str:
        ...

    def exchange_public_token(self, public_token: str) -> dict:
        """Return a dict with ``access_token`` and ``item_id``."""
        ...

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        ...

    def get_account_balances(self, access_token: str) -> list[ProviderAccount]:
        """Like ``get_accounts`` but forces a real-time balance refresh."""
        ...

    def sync_transactions(
        self, access_token: str, cursor: str | None = None
    ) -> TransactionSyncPage:
        """Fetch one page of changes since ``cursor``.

        ``cursor=None`` means no sync has happened yet for this Item and
        the feed starts from the beginning of available history.
        """
        ...

    def get_item(self, access_token: str) -> ProviderItem:
        ...

    def remove_item(self, access_token: str) -> None:
        ...
