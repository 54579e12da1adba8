"""Test fixtures and sample data."""
import hashlib
import time
from datetime import date
from decimal import Decimal

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from models import FinancialAccount, PlaidItem, Transaction
from services.token_vault import encrypt_token
from sqlalchemy.orm import Session

from tests.fixtures.mocks import SAMPLE_ACCESS_TOKEN

# 32 bytes, hex encoded; only ever used against the in-memory database
TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4

TEST_USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def create_plaid_item(
    db: Session,
    item_id: str,
    access_token: str,
    user_id: str = TEST_USER_ID,
    institution_name: str = "Test Bank",
) -> PlaidItem:
    """Create and commit a PlaidItem with an encrypted token.

    This is a helper function (not a fixture) for tests that need more
    than one Item.
    """
    item = PlaidItem(
        user_id=user_id,
        item_id=item_id,
        encrypted_access_token=encrypt_token(access_token),
        institution_id="ins_1",
        institution_name=institution_name,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def create_linked_account(
    db: Session,
    item: PlaidItem,
    plaid_account_id: str,
    name: str = "Checking",
    account_type: str = "checking",
) -> FinancialAccount:
    acc = FinancialAccount(
        user_id=item.user_id,
        name=name,
        account_type=account_type,
        institution_name=item.institution_name,
        current_balance=Decimal("100.00"),
        available_balance=Decimal("90.00"),
        is_manual=False,
        plaid_account_id=plaid_account_id,
        plaid_item_id=item.id,
    )
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def plaid_item(db: Session) -> PlaidItem:
    """Create a test Plaid Item owned by TEST_USER_ID."""
    return create_plaid_item(db, "item-1", SAMPLE_ACCESS_TOKEN)


@pytest.fixture
def financial_account(db: Session, plaid_item: PlaidItem) -> FinancialAccount:
    """Create a linked account mapped to Plaid account ``a1``."""
    return create_linked_account(db, plaid_item, "a1")


@pytest.fixture
def manual_account(db: Session) -> FinancialAccount:
    """Create a manual account with no Plaid link."""
    acc = FinancialAccount(
        user_id=TEST_USER_ID,
        name="Cash Envelope",
        account_type="checking",
        current_balance=Decimal("50.00"),
        is_manual=True,
    )
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def existing_transaction(db: Session, financial_account: FinancialAccount) -> Transaction:
    """Create a stored transaction with Plaid id ``t1``."""
    txn = Transaction(
        user_id=TEST_USER_ID,
        account_id=financial_account.id,
        plaid_transaction_id="t1",
        amount=Decimal("5.00"),
        description="Old Description",
        category="other",
        transaction_date=date(2024, 1, 1),
        is_pending=True,
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


@pytest.fixture
def webhook_signing_key():
    """An EC P-256 key pair standing in for Plaid's webhook signing key.

    Returns ``(private_key, public_pem)``.
    """
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_key, public_pem


def sign_webhook(private_key, body: bytes, issued_at: float | None = None) -> str:
    """Build a ``Plaid-Verification`` JWT for ``body``."""
    claims = {
        "iat": int(issued_at if issued_at is not None else time.time()),
        "request_body_sha256": hashlib.sha256(body).hexdigest(),
    }
    return jwt.encode(claims, private_key, algorithm="ES256", headers={"kid": "test-key"})
