"""Sync API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.deps import get_current_user_id
from database import get_db
from schemas import (
    BalanceSyncSummaryResponse,
    SyncResponse,
    TransactionSyncSummaryResponse,
)
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def get_sync_service() -> SyncService:
    """Dependency for injecting the SyncService (overridable in tests)."""
    return SyncService()


@router.post("", response_model=SyncResponse)
def trigger_sync(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    sync_service: SyncService = Depends(get_sync_service),
):
    """Refresh balances, then pull new transactions, for all the user's Items.

    Per-Item failures do not fail the request; they are listed in each
    summary's ``errors`` and flagged by ``partial_failure``.

    Raises:
        HTTPException:
            - 409 Conflict: Both syncs are already running for this user
    """
    balances = sync_service.sync_account_balances(db, user_id)
    transactions = sync_service.sync_user_transactions(db, user_id)

    if balances.lock_contended and transactions.lock_contended:
        raise HTTPException(
            status_code=409,
            detail="Sync already in progress. Please wait for the current sync to complete.",
        )

    partial_failure = bool(balances.errors or transactions.errors)
    if partial_failure:
        logger.warning(
            "Sync for user %s finished with errors (%d balance, %d transaction)",
            user_id, len(balances.errors), len(transactions.errors),
        )

    return SyncResponse(
        balances=BalanceSyncSummaryResponse.model_validate(balances),
        transactions=TransactionSyncSummaryResponse.model_validate(transactions),
        partial_failure=partial_failure,
    )
