"""Plaid Link API endpoints.

Server side of the Plaid Link flow: creating link tokens, exchanging
public tokens, listing and disconnecting linked Items, and polling the
historical sync started after a new link.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.deps import get_current_user_id
from database import get_db
from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from models import PlaidItem
from schemas import (
    ExchangeTokenRequest,
    ExchangeTokenResponse,
    LinkTokenResponse,
    PlaidItemResponse,
    SyncProgressResponse,
)
from services.account_service import AccountService
from services.background_sync import BackgroundSyncService
from services.plaid_item_service import PlaidItemService
from services.token_vault import decrypt_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])


def _get_plaid_client() -> PlaidClient:
    """Dependency for injecting the Plaid client (overridable in tests)."""
    return PlaidClient()


def _get_background_sync_service() -> BackgroundSyncService:
    """Dependency for injecting the background sync service (overridable in tests)."""
    return BackgroundSyncService()


def _get_owned_item(db: Session, user_id: str, item_id: str) -> PlaidItem:
    item = (
        db.query(PlaidItem)
        .filter(PlaidItem.item_id == item_id, PlaidItem.user_id == user_id)
        .first()
    )
    if not item:
        raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")
    return item


def _provider_http_error(action: str, e: ProviderError) -> HTTPException:
    """Map a provider failure to an HTTP error, with a hint for bad keys."""
    if e.error_code == "INVALID_API_KEYS":
        hint = (
            "Plaid rejected the credentials. Check that PLAID_ENVIRONMENT "
            "matches your keys (sandbox or production). "
            "Each environment has different secrets."
        )
        logger.error("Plaid INVALID_API_KEYS: %s", hint)
        return HTTPException(status_code=400, detail=hint)
    logger.error("Failed to %s: %s", action, e)
    return HTTPException(status_code=502, detail=f"Failed to {action}")


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    user_id: str = Depends(get_current_user_id),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Create a Plaid Link token for the frontend."""
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    try:
        return LinkTokenResponse(link_token=client.create_link_token(user_id))
    except ProviderError as e:
        raise _provider_http_error("create link token", e)


@router.post("/exchange-token", response_model=ExchangeTokenResponse)
def exchange_token(
    body: ExchangeTokenRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
    background: BackgroundSyncService = Depends(_get_background_sync_service),
):
    """Exchange a public_token, store the Item and its accounts, start history sync."""
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")

    try:
        result = client.exchange_public_token(body.public_token)
        access_token = result["access_token"]
        item_id = result["item_id"]
        remote_accounts = client.get_accounts(access_token)
    except ProviderError as e:
        raise _provider_http_error("exchange token", e)

    item = PlaidItemService.store_access_token(
        db,
        user_id,
        item_id,
        access_token,
        institution_id=body.institution_id,
        institution_name=body.institution_name,
    )
    created, updated = AccountService.upsert_linked_accounts(db, user_id, item, remote_accounts)
    db.commit()

    # History can take far longer than a request; poll sync-status for it
    sync_id = None
    try:
        sync_id = background.start_historical_sync(user_id, item_id, access_token).sync_id
    except Exception:
        logger.error("Could not start historical sync for item %s", item_id, exc_info=True)

    return ExchangeTokenResponse(
        item_id=item_id,
        institution_name=body.institution_name,
        accounts_created=created,
        accounts_updated=updated,
        sync_id=sync_id,
    )


@router.get("/items", response_model=list[PlaidItemResponse])
def list_items(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """List the user's linked Plaid Items."""
    items = (
        db.query(PlaidItem)
        .filter(PlaidItem.user_id == user_id)
        .order_by(PlaidItem.created_at.desc())
        .all()
    )
    return [PlaidItemResponse.model_validate(item) for item in items]


@router.post("/items/{item_id}/disconnect", response_model=PlaidItemResponse)
def disconnect_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Revoke an Item with Plaid and mark it revoked locally.

    The row and its transactions are kept; only the connection ends.
    """
    item = _get_owned_item(db, user_id, item_id)

    # Revoke remotely; proceed with the local status change even if this fails
    try:
        client.remove_item(decrypt_token(item.encrypted_access_token))
    except Exception as e:
        logger.warning("Failed to remove Plaid item remotely (revoking locally anyway): %s", e)

    PlaidItemService.revoke_access_token(db, item_id)
    db.commit()
    db.refresh(item)
    logger.info("Revoked PlaidItem %s", item_id)
    return PlaidItemResponse.model_validate(item)


@router.get("/sync-status/{item_id}", response_model=SyncProgressResponse)
def get_sync_status(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    background: BackgroundSyncService = Depends(_get_background_sync_service),
):
    """Progress of the historical sync for an Item."""
    _get_owned_item(db, user_id, item_id)
    progress = background.get_sync_status(db, item_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"No sync found for item: {item_id}")
    return SyncProgressResponse(
        item_id=item_id,
        status=progress.status.value,
        progress=progress.progress,
        transaction_count=progress.transaction_count,
        message=progress.message,
        error=progress.error,
        started_at=progress.started_at,
        completed_at=progress.completed_at,
        estimated_time_remaining=progress.estimated_time_remaining,
    )
