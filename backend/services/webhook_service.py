"""Plaid webhook verification and dispatch.

Plaid signs each webhook with an ES256 JWT in the ``Plaid-Verification``
header. The JWT carries a SHA-256 of the raw body and an issued-at time;
both are checked here against the configured verification key.

Dispatch rules:

- TRANSACTIONS update codes run a foreground transaction sync for the
  Item's owner (the per-user lock still applies)
- ITEM codes change the Item's lifecycle status directly, no sync
- anything else is recorded and ignored
"""

import hashlib
import logging
import time
from typing import Any, Callable, Optional

import jwt
from sqlalchemy.orm import Session

from config import settings
from models import PlaidItemStatus, WebhookEvent
from services.plaid_item_service import PlaidItemService
from services.sync_service import SyncService

logger = logging.getLogger(__name__)

# Replay window for the JWT issued-at claim
MAX_TOKEN_AGE_SECONDS = 5 * 60

TRANSACTION_SYNC_CODES = frozenset({
    "INITIAL_UPDATE",
    "HISTORICAL_UPDATE",
    "DEFAULT_UPDATE",
    "SYNC_UPDATES_AVAILABLE",
})


class WebhookVerificationError(Exception):
    """The webhook could not be proven to come from Plaid."""


def verify_webhook(
    body: bytes,
    signed_jwt: Optional[str],
    verification_key: Optional[str] = None,
    now: Callable[[], float] = time.time,
) -> None:
    """Check a webhook's signature, body hash and age.

    With no verification key configured, verification is skipped outside
    production and refused in production.

    Raises:
        WebhookVerificationError: On any failed check.
    """
    key = settings.PLAID_WEBHOOK_VERIFICATION_KEY if verification_key is None else verification_key
    if not key:
        if settings.is_production:
            raise WebhookVerificationError("PLAID_WEBHOOK_VERIFICATION_KEY not configured")
        logger.debug("Webhook signature verification skipped (no key configured)")
        return

    if not signed_jwt:
        raise WebhookVerificationError("Missing Plaid-Verification header")

    try:
        claims = jwt.decode(
            signed_jwt,
            key.strip(),
            algorithms=["ES256"],
            options={"verify_aud": False},
        )
    except jwt.InvalidTokenError as e:
        raise WebhookVerificationError(f"Invalid webhook JWT: {e}") from e

    if claims.get("request_body_sha256") != hashlib.sha256(body).hexdigest():
        raise WebhookVerificationError("Request body hash mismatch")

    issued_at = claims.get("iat")
    if not isinstance(issued_at, (int, float)):
        raise WebhookVerificationError("Webhook JWT has no iat claim")
    age = now() - issued_at
    if age > MAX_TOKEN_AGE_SECONDS:
        raise WebhookVerificationError(f"Webhook token too old: {int(age)} seconds")


class WebhookService:
    """Records and acts on verified Plaid webhooks."""

    def __init__(self, sync_service: Optional[SyncService] = None):
        self._sync_service = sync_service

    @property
    def sync_service(self) -> SyncService:
        if self._sync_service is None:
            self._sync_service = SyncService()
        return self._sync_service

    def handle(self, db: Session, payload: dict[str, Any]) -> WebhookEvent:
        """Record the event, then dispatch it.

        Failures while dispatching are stored on the event row rather
        than raised, so the caller can always acknowledge receipt.
        """
        webhook_type = payload.get("webhook_type")
        webhook_code = payload.get("webhook_code")
        item_id = payload.get("item_id")
        logger.info("Received webhook %s.%s for item %s", webhook_type, webhook_code, item_id)

        event = WebhookEvent(
            webhook_type=webhook_type,
            webhook_code=webhook_code,
            item_id=item_id,
            payload=payload,
        )
        db.add(event)
        db.commit()

        try:
            self._dispatch(db, webhook_type, webhook_code, item_id, payload)
            event.processed = True
        except Exception as e:
            db.rollback()
            logger.error(
                "Error processing webhook %s.%s for item %s",
                webhook_type, webhook_code, item_id, exc_info=True,
            )
            event.error = str(e)
        db.commit()
        return event

    def _dispatch(
        self,
        db: Session,
        webhook_type: Optional[str],
        webhook_code: Optional[str],
        item_id: Optional[str],
        payload: dict[str, Any],
    ) -> None:
        item = PlaidItemService.get_item(db, item_id) if item_id else None
        if item is None:
            logger.warning("Webhook for unknown item %s ignored", item_id)
            return

        if webhook_type == "TRANSACTIONS":
            if webhook_code in TRANSACTION_SYNC_CODES:
                summary = self.sync_service.sync_user_transactions(db, item.user_id)
                if summary.errors:
                    logger.warning(
                        "Webhook-triggered sync for user %s finished with %d error(s)",
                        item.user_id, len(summary.errors),
                    )
            else:
                logger.info("Unhandled transactions webhook code: %s", webhook_code)

        elif webhook_type == "ITEM":
            if webhook_code == "ERROR":
                error = payload.get("error") or {}
                PlaidItemService.set_item_status(
                    db,
                    item_id,
                    PlaidItemStatus.ERROR,
                    error_code=error.get("error_code"),
                    error_message=error.get("error_message"),
                )
            elif webhook_code == "PENDING_EXPIRATION":
                PlaidItemService.set_item_status(db, item_id, PlaidItemStatus.PENDING_EXPIRATION)
            elif webhook_code == "USER_PERMISSION_REVOKED":
                PlaidItemService.set_item_status(db, item_id, PlaidItemStatus.REVOKED)
            else:
                logger.info("Unhandled item webhook code: %s", webhook_code)

        else:
            logger.info("Unhandled webhook type: %s", webhook_type)
