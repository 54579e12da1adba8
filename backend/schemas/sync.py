"""Pydantic schemas for sync results and progress."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SyncErrorResponse(BaseModel):
    item_id: str
    error: str

    model_config = {"from_attributes": True}


class TransactionSyncSummaryResponse(BaseModel):
    """Result of a foreground transaction sync."""

    items_processed: int
    items_successful: int
    items_failed: int
    total_transactions_added: int
    total_transactions_modified: int
    total_transactions_removed: int
    errors: list[SyncErrorResponse] = []

    model_config = {"from_attributes": True}


class BalanceSyncSummaryResponse(BaseModel):
    """Result of a balance refresh."""

    items_processed: int
    items_successful: int
    items_failed: int
    total_accounts_updated: int
    errors: list[SyncErrorResponse] = []

    model_config = {"from_attributes": True}


class SyncResponse(BaseModel):
    """Response for POST /api/sync."""

    balances: BalanceSyncSummaryResponse
    transactions: TransactionSyncSummaryResponse
    partial_failure: bool


class SyncProgressResponse(BaseModel):
    """Historical sync progress for a polling client."""

    item_id: str
    status: str
    progress: int
    transaction_count: int
    message: str
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_time_remaining: Optional[int] = None
