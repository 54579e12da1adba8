"""Apply pages of the Plaid transaction feed to the local ledger.

Shared by the foreground sync and the background historical sync so both
use identical reconciliation rules:

- provider account ids resolve to local accounts of the same Item only;
  records for unknown accounts are dropped, not queued
- added and modified records both upsert by ``plaid_transaction_id``
- removed records delete by ``plaid_transaction_id``; a missing row is fine
- both only ever touch rows owned by the writer's user
- each record is written in its own savepoint, so one bad record is
  logged and skipped without losing the rest of the page

Replaying a page is idempotent, which is what makes it safe to persist
the cursor only after the page has been applied.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from integrations.provider_protocol import ProviderTransaction, TransactionSyncPage
from models import FinancialAccount, PlaidItem, Transaction
from models.utils import utcnow
from services.category_mapper import map_plaid_category

logger = logging.getLogger(__name__)


@dataclass
class PageResult:
    """Counts for one applied page.

    ``added``/``modified`` follow the provider's classification: an
    "added" record that matched an existing row still counts as added.
    """

    added: int = 0
    modified: int = 0
    removed: int = 0
    skipped: int = 0  # account could not be resolved
    failed: int = 0  # storage error on the record

    @property
    def applied(self) -> int:
        return self.added + self.modified


class TransactionWriter:
    """Writes feed records for one user's PlaidItem."""

    def __init__(self, db: Session, user_id: str, plaid_item: PlaidItem):
        self._db = db
        self._user_id = user_id
        self._item = plaid_item

    def account_map(self) -> dict[str, str]:
        """Map Plaid account_id -> local FinancialAccount.id for this Item."""
        rows = (
            self._db.query(FinancialAccount.plaid_account_id, FinancialAccount.id)
            .filter(
                FinancialAccount.plaid_item_id == self._item.id,
                FinancialAccount.plaid_account_id.isnot(None),
            )
            .all()
        )
        return {plaid_id: local_id for plaid_id, local_id in rows}

    def apply_page(self, page: TransactionSyncPage) -> PageResult:
        """Upsert added/modified records and delete removed ones."""
        result = PageResult()
        accounts = self.account_map()

        for kind, records in (("added", page.added), ("modified", page.modified)):
            for txn in records:
                account_id = accounts.get(txn.account_id)
                if account_id is None:
                    logger.debug(
                        "Skipping transaction %s: no local account for %s",
                        txn.transaction_id, txn.account_id,
                    )
                    result.skipped += 1
                    continue
                try:
                    with self._db.begin_nested():
                        row = self.upsert(txn, account_id)
                except SQLAlchemyError:
                    logger.warning(
                        "Failed to upsert transaction %s", txn.transaction_id, exc_info=True
                    )
                    result.failed += 1
                    continue
                if row is None:
                    result.failed += 1
                    continue
                if kind == "added":
                    result.added += 1
                else:
                    result.modified += 1

        for removed in page.removed:
            try:
                with self._db.begin_nested():
                    self.delete(removed.transaction_id)
            except SQLAlchemyError:
                logger.warning(
                    "Failed to delete transaction %s", removed.transaction_id, exc_info=True
                )
                result.failed += 1
                continue
            result.removed += 1

        if result.skipped:
            logger.info(
                "Item %s: skipped %d transaction(s) for unlinked accounts",
                self._item.item_id, result.skipped,
            )
        return result

    def upsert(self, txn: ProviderTransaction, account_id: str) -> Transaction | None:
        """Insert or update the row keyed by ``txn.transaction_id``.

        Returns None, leaving the row untouched, when the id already
        belongs to another user.
        """
        existing = (
            self._db.query(Transaction)
            .filter(Transaction.plaid_transaction_id == txn.transaction_id)
            .first()
        )
        if existing is not None and existing.user_id != self._user_id:
            logger.warning(
                "Transaction %s belongs to another user; not updating it",
                txn.transaction_id,
            )
            return None
        category = map_plaid_category(txn.category).value
        if existing:
            existing.account_id = account_id
            existing.amount = txn.amount
            existing.description = txn.description
            existing.category = category
            existing.transaction_date = txn.date
            existing.is_pending = txn.pending
            existing.updated_at = utcnow()
            row = existing
        else:
            row = Transaction(
                user_id=self._user_id,
                account_id=account_id,
                plaid_transaction_id=txn.transaction_id,
                amount=txn.amount,
                description=txn.description,
                category=category,
                transaction_date=txn.date,
                is_pending=txn.pending,
            )
            self._db.add(row)
        self._db.flush()
        return row

    def delete(self, transaction_id: str) -> int:
        """Delete by provider id. Returns the number of rows removed."""
        return (
            self._db.query(Transaction)
            .filter(
                Transaction.plaid_transaction_id == transaction_id,
                Transaction.user_id == self._user_id,
            )
            .delete(synchronize_session=False)
        )
