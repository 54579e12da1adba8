"""Pydantic request/response schemas."""

from .plaid import (
    ExchangeTokenRequest,
    ExchangeTokenResponse,
    LinkTokenResponse,
    PlaidItemResponse,
    WebhookAck,
)
from .sync import (
    BalanceSyncSummaryResponse,
    SyncErrorResponse,
    SyncProgressResponse,
    SyncResponse,
    TransactionSyncSummaryResponse,
)

__all__ = [
    "BalanceSyncSummaryResponse",
    "ExchangeTokenRequest",
    "ExchangeTokenResponse",
    "LinkTokenResponse",
    "PlaidItemResponse",
    "SyncErrorResponse",
    "SyncProgressResponse",
    "SyncResponse",
    "TransactionSyncSummaryResponse",
    "WebhookAck",
]
