"""WebhookEvent model - audit log of received Plaid webhooks."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    webhook_type = Column(String, nullable=True)
    webhook_code = Column(String, nullable=True)
    item_id = Column(String, nullable=True, index=True)
    payload = Column(JSON, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
