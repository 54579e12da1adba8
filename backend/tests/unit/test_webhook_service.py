"""Tests for Plaid webhook verification and dispatch."""

import json
import time
from unittest.mock import MagicMock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from config import settings
from models import PlaidItemStatus, WebhookEvent
from services.sync_service import TransactionSyncSummary
from services.webhook_service import (
    WebhookService,
    WebhookVerificationError,
    verify_webhook,
)
from tests.fixtures import TEST_USER_ID, sign_webhook

BODY = json.dumps({"webhook_type": "TRANSACTIONS", "webhook_code": "SYNC_UPDATES_AVAILABLE"}).encode()


# ---------------------------------------------------------------------------
# verify_webhook
# ---------------------------------------------------------------------------


class TestVerifyWebhook:
    def test_valid_signature(self, webhook_signing_key):
        private_key, public_pem = webhook_signing_key

        verify_webhook(BODY, sign_webhook(private_key, BODY), public_pem)

    def test_missing_header(self, webhook_signing_key):
        _, public_pem = webhook_signing_key

        with pytest.raises(WebhookVerificationError, match="Missing"):
            verify_webhook(BODY, None, public_pem)

    def test_signed_by_other_key(self, webhook_signing_key):
        _, public_pem = webhook_signing_key
        stranger = ec.generate_private_key(ec.SECP256R1())

        with pytest.raises(WebhookVerificationError, match="Invalid webhook JWT"):
            verify_webhook(BODY, sign_webhook(stranger, BODY), public_pem)

    def test_rejects_other_algorithms(self, webhook_signing_key):
        _, public_pem = webhook_signing_key
        token = jwt.encode({"iat": int(time.time())}, "shared-secret", algorithm="HS256")

        with pytest.raises(WebhookVerificationError):
            verify_webhook(BODY, token, public_pem)

    def test_body_hash_mismatch(self, webhook_signing_key):
        private_key, public_pem = webhook_signing_key
        token = sign_webhook(private_key, BODY)

        with pytest.raises(WebhookVerificationError, match="hash mismatch"):
            verify_webhook(BODY + b" ", token, public_pem)

    def test_token_too_old(self, webhook_signing_key):
        private_key, public_pem = webhook_signing_key
        token = sign_webhook(private_key, BODY, issued_at=1_000_000)

        with pytest.raises(WebhookVerificationError, match="too old"):
            verify_webhook(BODY, token, public_pem, now=lambda: 1_000_000 + 301)

    def test_token_within_window(self, webhook_signing_key):
        private_key, public_pem = webhook_signing_key
        token = sign_webhook(private_key, BODY, issued_at=1_000_000)

        verify_webhook(BODY, token, public_pem, now=lambda: 1_000_000 + 300)

    def test_no_key_skips_outside_production(self, monkeypatch):
        monkeypatch.setattr(settings, "PLAID_WEBHOOK_VERIFICATION_KEY", "")
        monkeypatch.setattr(settings, "ENVIRONMENT", "development")

        verify_webhook(BODY, None)

    def test_no_key_refused_in_production(self, monkeypatch):
        monkeypatch.setattr(settings, "PLAID_WEBHOOK_VERIFICATION_KEY", "")
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")

        with pytest.raises(WebhookVerificationError, match="not configured"):
            verify_webhook(BODY, "anything")

    def test_uses_configured_key(self, monkeypatch, webhook_signing_key):
        private_key, public_pem = webhook_signing_key
        monkeypatch.setattr(settings, "PLAID_WEBHOOK_VERIFICATION_KEY", public_pem)

        verify_webhook(BODY, sign_webhook(private_key, BODY))
        with pytest.raises(WebhookVerificationError):
            verify_webhook(BODY, None)


# ---------------------------------------------------------------------------
# WebhookService
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_sync_service():
    service = MagicMock()
    service.sync_user_transactions.return_value = TransactionSyncSummary()
    return service


@pytest.fixture
def webhook_service(mock_sync_service):
    return WebhookService(sync_service=mock_sync_service)


class TestHandle:
    @pytest.mark.parametrize(
        "code",
        ["INITIAL_UPDATE", "HISTORICAL_UPDATE", "DEFAULT_UPDATE", "SYNC_UPDATES_AVAILABLE"],
    )
    def test_transaction_codes_trigger_sync(self, db, plaid_item, webhook_service, mock_sync_service, code):
        event = webhook_service.handle(
            db, {"webhook_type": "TRANSACTIONS", "webhook_code": code, "item_id": "item-1"}
        )

        mock_sync_service.sync_user_transactions.assert_called_once_with(db, TEST_USER_ID)
        assert event.processed is True
        assert event.error is None

    def test_other_transaction_codes_ignored(self, db, plaid_item, webhook_service, mock_sync_service):
        event = webhook_service.handle(
            db,
            {"webhook_type": "TRANSACTIONS", "webhook_code": "TRANSACTIONS_REMOVED", "item_id": "item-1"},
        )

        mock_sync_service.sync_user_transactions.assert_not_called()
        assert event.processed is True

    def test_item_error_sets_status(self, db, plaid_item, webhook_service, mock_sync_service):
        webhook_service.handle(
            db,
            {
                "webhook_type": "ITEM",
                "webhook_code": "ERROR",
                "item_id": "item-1",
                "error": {"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login again"},
            },
        )

        db.refresh(plaid_item)
        assert plaid_item.status == PlaidItemStatus.ERROR.value
        assert plaid_item.error_code == "ITEM_LOGIN_REQUIRED"
        assert plaid_item.error_message == "login again"
        mock_sync_service.sync_user_transactions.assert_not_called()

    @pytest.mark.parametrize(
        "code,status",
        [
            ("PENDING_EXPIRATION", PlaidItemStatus.PENDING_EXPIRATION),
            ("USER_PERMISSION_REVOKED", PlaidItemStatus.REVOKED),
        ],
    )
    def test_item_lifecycle_codes(self, db, plaid_item, webhook_service, code, status):
        webhook_service.handle(
            db, {"webhook_type": "ITEM", "webhook_code": code, "item_id": "item-1"}
        )

        db.refresh(plaid_item)
        assert plaid_item.status == status.value

    def test_unknown_item_recorded_and_ignored(self, db, webhook_service, mock_sync_service):
        event = webhook_service.handle(
            db,
            {"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "nope"},
        )

        mock_sync_service.sync_user_transactions.assert_not_called()
        assert event.processed is True
        assert db.query(WebhookEvent).count() == 1

    def test_unknown_type_recorded(self, db, plaid_item, webhook_service):
        event = webhook_service.handle(
            db, {"webhook_type": "AUTH", "webhook_code": "AUTOMATICALLY_VERIFIED", "item_id": "item-1"}
        )

        stored = db.query(WebhookEvent).one()
        assert stored.id == event.id
        assert stored.webhook_type == "AUTH"
        assert stored.payload["webhook_code"] == "AUTOMATICALLY_VERIFIED"

    def test_dispatch_failure_stored_on_event(self, db, plaid_item, webhook_service, mock_sync_service):
        mock_sync_service.sync_user_transactions.side_effect = RuntimeError("db gone")

        event = webhook_service.handle(
            db,
            {"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "item-1"},
        )

        db.refresh(event)
        assert event.processed is False
        assert event.error == "db gone"
