"""Persistence helpers for PlaidItems and their encrypted access tokens.

Plaintext access tokens exist only in memory: they are encrypted on the
way into ``plaid_items`` and decrypted on the way out. None of these
helpers log token values.
"""

import logging

from sqlalchemy.orm import Session

from models import PlaidItem, PlaidItemStatus
from models.utils import utcnow
from services.token_vault import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)


class PlaidItemService:
    """Store, look up, and update the lifecycle of linked Items."""

    @staticmethod
    def store_access_token(
        db: Session,
        user_id: str,
        item_id: str,
        access_token: str,
        institution_id: str | None = None,
        institution_name: str | None = None,
    ) -> PlaidItem:
        """Encrypt and upsert an Item's access token.

        Re-linking an existing Item (Plaid Link update mode) replaces the
        token and clears any previous error state. The sync cursor is
        kept so the next sync resumes rather than starting over.
        """
        encrypted = encrypt_token(access_token)
        item = db.query(PlaidItem).filter(PlaidItem.item_id == item_id).first()
        if item:
            item.user_id = user_id
            item.encrypted_access_token = encrypted
            item.status = PlaidItemStatus.ACTIVE.value
            item.error_code = None
            item.error_message = None
            if institution_id:
                item.institution_id = institution_id
            if institution_name:
                item.institution_name = institution_name
            logger.info("Updated PlaidItem %s", item_id)
        else:
            item = PlaidItem(
                user_id=user_id,
                item_id=item_id,
                encrypted_access_token=encrypted,
                institution_id=institution_id,
                institution_name=institution_name,
                status=PlaidItemStatus.ACTIVE.value,
            )
            db.add(item)
            logger.info("Created PlaidItem %s for %s", item_id, institution_name)
        db.flush()
        return item

    @staticmethod
    def get_item(db: Session, item_id: str) -> PlaidItem | None:
        return db.query(PlaidItem).filter(PlaidItem.item_id == item_id).first()

    @staticmethod
    def get_access_token(db: Session, item_id: str) -> str | None:
        """Decrypted access token for an Item, or None if unknown."""
        item = PlaidItemService.get_item(db, item_id)
        if item is None:
            return None
        return decrypt_token(item.encrypted_access_token)

    @staticmethod
    def get_user_access_tokens(db: Session, user_id: str) -> list[tuple[PlaidItem, str]]:
        """Active Items for a user with their decrypted tokens.

        Decryption failures propagate: a token that cannot be decrypted
        means the server key is wrong, which no retry will fix.
        """
        items = (
            db.query(PlaidItem)
            .filter(
                PlaidItem.user_id == user_id,
                PlaidItem.status == PlaidItemStatus.ACTIVE.value,
            )
            .order_by(PlaidItem.created_at)
            .all()
        )
        return [(item, decrypt_token(item.encrypted_access_token)) for item in items]

    @staticmethod
    def revoke_access_token(db: Session, item_id: str) -> bool:
        """Mark an Item revoked. The row is kept for history."""
        return PlaidItemService.set_item_status(db, item_id, PlaidItemStatus.REVOKED)

    @staticmethod
    def set_item_status(
        db: Session,
        item_id: str,
        status: PlaidItemStatus,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Set an Item's lifecycle status. Returns False if the Item is unknown."""
        item = PlaidItemService.get_item(db, item_id)
        if item is None:
            logger.warning("Status update for unknown PlaidItem %s", item_id)
            return False
        item.status = status.value
        item.error_code = error_code
        item.error_message = error_message
        item.updated_at = utcnow()
        db.flush()
        logger.info("PlaidItem %s status -> %s", item_id, status.value)
        return True

    @staticmethod
    def mark_item_error(
        db: Session,
        item: PlaidItem,
        message: str,
        error_code: str | None = None,
    ) -> None:
        """Record a sync failure on an Item (status ``error``)."""
        item.status = PlaidItemStatus.ERROR.value
        item.error_message = message
        item.error_code = error_code
        item.updated_at = utcnow()
        db.flush()
