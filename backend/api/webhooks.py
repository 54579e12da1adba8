"""Plaid webhook endpoint."""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.sync import get_sync_service
from database import get_db
from schemas import WebhookAck
from services.sync_service import SyncService
from services.webhook_service import WebhookService, WebhookVerificationError, verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def get_webhook_service(
    sync_service: SyncService = Depends(get_sync_service),
) -> WebhookService:
    return WebhookService(sync_service=sync_service)


@router.post("/plaid", response_model=WebhookAck)
async def plaid_webhook(
    request: Request,
    plaid_verification: Optional[str] = Header(default=None, alias="Plaid-Verification"),
    db: Session = Depends(get_db),
    service: WebhookService = Depends(get_webhook_service),
):
    """Receive a Plaid webhook.

    Returns 401 only when the signature cannot be verified. Every other
    outcome is acknowledged with 200 so Plaid does not redeliver.
    """
    body = await request.body()
    try:
        verify_webhook(body, plaid_verification)
    except WebhookVerificationError as e:
        logger.error("Invalid webhook signature: %s", e)
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        logger.error("Webhook body is not valid JSON")
        return WebhookAck()
    if not isinstance(payload, dict):
        logger.error("Webhook body is not a JSON object")
        return WebhookAck()

    try:
        # Sync work is blocking; keep it off the event loop
        await run_in_threadpool(service.handle, db, payload)
    except Exception:
        logger.error("Error processing webhook", exc_info=True)
    return WebhookAck()
