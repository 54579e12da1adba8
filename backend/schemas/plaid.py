"""Pydantic schemas for the Plaid Link endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class LinkTokenResponse(BaseModel):
    link_token: str


class ExchangeTokenRequest(BaseModel):
    public_token: str
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None


class ExchangeTokenResponse(BaseModel):
    item_id: str
    institution_name: Optional[str] = None
    accounts_created: int = 0
    accounts_updated: int = 0
    sync_id: Optional[str] = None


class PlaidItemResponse(BaseModel):
    """A linked Item as shown to its owner. Never includes the token."""

    id: str
    item_id: str
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    last_sync: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class WebhookAck(BaseModel):
    received: bool = True
