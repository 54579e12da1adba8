"""Integration tests for the Plaid webhook endpoint."""

import json

import pytest

from config import settings
from models import PlaidItemStatus, Transaction, WebhookEvent
from tests.fixtures import sign_webhook
from tests.fixtures.mocks import make_page, make_transaction


@pytest.fixture
def signing_key(monkeypatch, webhook_signing_key):
    private_key, public_pem = webhook_signing_key
    monkeypatch.setattr(settings, "PLAID_WEBHOOK_VERIFICATION_KEY", public_pem)
    return private_key


def _post(client, payload, private_key=None, raw=None):
    body = raw if raw is not None else json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if private_key is not None:
        headers["Plaid-Verification"] = sign_webhook(private_key, body)
    return client.post("/api/webhooks/plaid", content=body, headers=headers)


class TestSignature:
    def test_valid_signature_accepted(self, client, db, signing_key, plaid_item):
        response = _post(
            client,
            {"webhook_type": "AUTH", "webhook_code": "AUTOMATICALLY_VERIFIED", "item_id": "item-1"},
            signing_key,
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}

    def test_missing_signature_is_401(self, client, db, signing_key):
        response = _post(client, {"webhook_type": "ITEM", "webhook_code": "ERROR"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid signature"
        assert db.query(WebhookEvent).count() == 0

    def test_tampered_body_is_401(self, client, signing_key):
        body = json.dumps({"webhook_type": "ITEM"}).encode()
        token = sign_webhook(signing_key, body)

        response = client.post(
            "/api/webhooks/plaid",
            content=body.replace(b"ITEM", b"AUTH"),
            headers={"Plaid-Verification": token, "Content-Type": "application/json"},
        )

        assert response.status_code == 401

    def test_unsigned_allowed_without_key_in_development(self, client, monkeypatch):
        monkeypatch.setattr(settings, "PLAID_WEBHOOK_VERIFICATION_KEY", "")
        monkeypatch.setattr(settings, "ENVIRONMENT", "development")

        response = _post(client, {"webhook_type": "AUTH", "webhook_code": "X"})

        assert response.status_code == 200

    def test_unsigned_rejected_without_key_in_production(self, client, monkeypatch):
        monkeypatch.setattr(settings, "PLAID_WEBHOOK_VERIFICATION_KEY", "")
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")

        response = _post(client, {"webhook_type": "AUTH", "webhook_code": "X"})

        assert response.status_code == 401


class TestDispatch:
    def test_sync_updates_available_runs_sync(
        self, client, db, signing_key, plaid_item, financial_account, mock_plaid_client
    ):
        mock_plaid_client.add_pages(make_page(added=[make_transaction("t1")], next_cursor="c1"))

        response = _post(
            client,
            {
                "webhook_type": "TRANSACTIONS",
                "webhook_code": "SYNC_UPDATES_AVAILABLE",
                "item_id": "item-1",
            },
            signing_key,
        )

        assert response.status_code == 200
        db.expire_all()
        assert db.query(Transaction).one().plaid_transaction_id == "t1"
        event = db.query(WebhookEvent).one()
        assert event.processed is True

    def test_item_error_updates_status(self, client, db, signing_key, plaid_item):
        response = _post(
            client,
            {
                "webhook_type": "ITEM",
                "webhook_code": "ERROR",
                "item_id": "item-1",
                "error": {"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "re-auth"},
            },
            signing_key,
        )

        assert response.status_code == 200
        db.expire_all()
        db.refresh(plaid_item)
        assert plaid_item.status == PlaidItemStatus.ERROR.value
        assert plaid_item.error_code == "ITEM_LOGIN_REQUIRED"

    def test_unknown_item_acknowledged(self, client, db, signing_key):
        response = _post(
            client,
            {"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "ghost"},
            signing_key,
        )

        assert response.status_code == 200
        assert db.query(WebhookEvent).count() == 1

    def test_invalid_json_acknowledged(self, client, db, signing_key):
        response = _post(client, None, signing_key, raw=b"not json")

        assert response.status_code == 200
        assert db.query(WebhookEvent).count() == 0

    def test_non_object_json_acknowledged(self, client, db, signing_key):
        response = _post(client, None, signing_key, raw=b"[1, 2]")

        assert response.status_code == 200
        assert db.query(WebhookEvent).count() == 0
