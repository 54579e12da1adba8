"""Sync service - pulls balances and transactions for a user's linked Items."""

import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from integrations.plaid_errors import requires_reconnect
from integrations.provider_protocol import AggregationClient
from models import FinancialAccount, PlaidItem
from models.utils import utcnow
from services.plaid_item_service import PlaidItemService
from services.retry import with_retry
from services.sync_lock import SyncLockManager, SyncLockType
from services.transaction_writer import TransactionWriter

logger = logging.getLogger(__name__)

# Item id used for errors that are not tied to a specific Item
NO_ITEM = "N/A"


@dataclass
class SyncError:
    item_id: str
    error: str


@dataclass
class ItemSyncResult:
    """Outcome of syncing a single PlaidItem."""

    item_id: str
    success: bool = False
    transactions_added: int = 0
    transactions_modified: int = 0
    transactions_removed: int = 0
    accounts_updated: int = 0
    pages_fetched: int = 0
    error: str | None = None


@dataclass
class TransactionSyncSummary:
    items_processed: int = 0
    items_successful: int = 0
    items_failed: int = 0
    total_transactions_added: int = 0
    total_transactions_modified: int = 0
    total_transactions_removed: int = 0
    errors: list[SyncError] = field(default_factory=list)
    results: list[ItemSyncResult] = field(default_factory=list)
    lock_contended: bool = False


@dataclass
class BalanceSyncSummary:
    items_processed: int = 0
    items_successful: int = 0
    items_failed: int = 0
    total_accounts_updated: int = 0
    errors: list[SyncError] = field(default_factory=list)
    results: list[ItemSyncResult] = field(default_factory=list)
    lock_contended: bool = False


class SyncService:
    """Foreground (request-scoped) balance and transaction sync.

    Each run holds a per-user database lock for its kind of sync, walks
    the user's active Items one at a time, and isolates failures per
    Item: a broken connection is marked ``error`` and the run moves on.
    Expected failures never raise; they are reported in the summary.
    """

    def __init__(
        self,
        plaid_client: Optional[AggregationClient] = None,
        lock_manager: Optional[SyncLockManager] = None,
        max_pages: int | None = None,
        max_retries: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize with optional collaborators for dependency injection.

        Args:
            plaid_client: Aggregation client. If None, a PlaidClient is
                created on first use.
            lock_manager: Lock manager; defaults to the configured TTL.
            max_pages: Page-fetch ceiling per Item (guards against a
                provider that reports ``has_more`` forever).
            max_retries, base_delay, max_delay: Backoff for transient
                provider errors.
            sleep: Wait function used between retries.
        """
        self._plaid_client = plaid_client
        self._lock_manager = lock_manager or SyncLockManager()
        self._max_pages = max_pages if max_pages is not None else settings.SYNC_MAX_PAGES
        self._max_retries = (
            max_retries if max_retries is not None else settings.RETRY_MAX_RETRIES
        )
        self._base_delay = base_delay if base_delay is not None else settings.RETRY_BASE_DELAY
        self._max_delay = max_delay if max_delay is not None else settings.RETRY_MAX_DELAY
        self._sleep = sleep

    @property
    def plaid_client(self) -> AggregationClient:
        """Get the aggregation client, creating the default if not provided."""
        if self._plaid_client is None:
            self._plaid_client = PlaidClient()
        return self._plaid_client

    @property
    def lock_manager(self) -> SyncLockManager:
        return self._lock_manager

    def _call_provider(self, operation: Callable):
        return with_retry(
            operation,
            max_retries=self._max_retries,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def sync_user_transactions(self, db: Session, user_id: str) -> TransactionSyncSummary:
        """Sync transactions for every active Item the user owns.

        Returns:
            Aggregate counts plus one error entry per failed Item. If the
            user's transaction lock is already held, returns immediately
            with zero counts and the contention message as the only error.
        """
        lock = self._lock_manager.acquire(db, user_id, SyncLockType.TRANSACTION_SYNC)
        if not lock.acquired:
            logger.warning("Transaction sync skipped for user %s: %s", user_id, lock.message)
            return TransactionSyncSummary(
                errors=[SyncError(NO_ITEM, lock.message)], lock_contended=True
            )

        try:
            summary = TransactionSyncSummary()
            items = PlaidItemService.get_user_access_tokens(db, user_id)
            if not items:
                logger.info("No active Plaid items for user %s", user_id)
                return summary

            logger.info("Transaction sync started for user %s (%d items)", user_id, len(items))
            for item, access_token in items:
                summary.items_processed += 1
                result = self._sync_item_transactions(db, user_id, item, access_token)
                summary.results.append(result)
                if result.success:
                    summary.items_successful += 1
                    summary.total_transactions_added += result.transactions_added
                    summary.total_transactions_modified += result.transactions_modified
                    summary.total_transactions_removed += result.transactions_removed
                else:
                    summary.items_failed += 1
                    summary.errors.append(SyncError(result.item_id, result.error or ""))

            logger.info(
                "Transaction sync finished for user %s: %d/%d items ok, "
                "+%d ~%d -%d transactions",
                user_id,
                summary.items_successful,
                summary.items_processed,
                summary.total_transactions_added,
                summary.total_transactions_modified,
                summary.total_transactions_removed,
            )
            return summary
        finally:
            if not self._lock_manager.release(db, lock.lock_id):
                logger.error("Transaction sync lock %s for user %s was not released", lock.lock_id, user_id)

    def _sync_item_transactions(
        self,
        db: Session,
        user_id: str,
        item: PlaidItem,
        access_token: str,
    ) -> ItemSyncResult:
        """Walk one Item's change feed from its stored cursor.

        Records are committed page by page. The cursor and ``last_sync``
        are written once, after the last page, so a failure part-way
        through re-fetches from the old cursor next time; the upserts make
        that replay harmless.
        """
        item_id = item.item_id
        result = ItemSyncResult(item_id=item_id)
        writer = TransactionWriter(db, user_id, item)
        cursor = item.transactions_cursor

        try:
            has_more = True
            while has_more and result.pages_fetched < self._max_pages:
                page = self._call_provider(
                    partial(self.plaid_client.sync_transactions, access_token, cursor)
                )
                result.pages_fetched += 1

                applied = writer.apply_page(page)
                db.commit()
                result.transactions_added += applied.added
                result.transactions_modified += applied.modified
                result.transactions_removed += applied.removed

                cursor = page.next_cursor
                has_more = page.has_more

            if has_more:
                logger.warning(
                    "Item %s: stopped after %d pages with more available",
                    item_id, result.pages_fetched,
                )

            item.transactions_cursor = cursor
            item.last_sync = utcnow()
            db.commit()
            result.success = True
        except ProviderError as e:
            result.error = str(e)
            logger.warning("Provider error syncing item %s: %s", item_id, e)
            if requires_reconnect(e):
                logger.warning("Item %s must be re-linked through Plaid Link", item_id)
            self._mark_item_failed(db, item, result.error, e.error_code)
        except Exception as e:
            # Safety net for storage or unexpected errors
            result.error = str(e)
            logger.error("Unexpected error syncing item %s: %s", item_id, e, exc_info=True)
            self._mark_item_failed(db, item, result.error)

        return result

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def sync_account_balances(self, db: Session, user_id: str) -> BalanceSyncSummary:
        """Refresh current/available balances on the user's linked accounts."""
        lock = self._lock_manager.acquire(db, user_id, SyncLockType.BALANCE_SYNC)
        if not lock.acquired:
            logger.warning("Balance sync skipped for user %s: %s", user_id, lock.message)
            return BalanceSyncSummary(
                errors=[SyncError(NO_ITEM, lock.message)], lock_contended=True
            )

        try:
            summary = BalanceSyncSummary()
            for item, access_token in PlaidItemService.get_user_access_tokens(db, user_id):
                summary.items_processed += 1
                result = ItemSyncResult(item_id=item.item_id)
                try:
                    result.accounts_updated = self.sync_item_balances(db, item, access_token)
                    db.commit()
                    result.success = True
                except ProviderError as e:
                    result.error = str(e)
                    logger.warning("Provider error refreshing balances for %s: %s", item.item_id, e)
                    self._mark_item_failed(db, item, result.error, e.error_code)
                except Exception as e:
                    result.error = str(e)
                    logger.error(
                        "Unexpected error refreshing balances for %s: %s",
                        item.item_id, e, exc_info=True,
                    )
                    self._mark_item_failed(db, item, result.error)

                summary.results.append(result)
                if result.success:
                    summary.items_successful += 1
                    summary.total_accounts_updated += result.accounts_updated
                else:
                    summary.items_failed += 1
                    summary.errors.append(SyncError(result.item_id, result.error or ""))

            logger.info(
                "Balance sync finished for user %s: %d/%d items ok, %d accounts updated",
                user_id, summary.items_successful, summary.items_processed,
                summary.total_accounts_updated,
            )
            return summary
        finally:
            if not self._lock_manager.release(db, lock.lock_id):
                logger.error("Balance sync lock %s for user %s was not released", lock.lock_id, user_id)

    def sync_item_balances(self, db: Session, item: PlaidItem, access_token: str) -> int:
        """Copy fresh balances onto this Item's linked accounts.

        Manual accounts are never touched. A failure updating one account
        is logged and skipped. Flushes only; the caller commits.

        Returns:
            Number of local accounts updated.
        """
        remote_accounts = self._call_provider(
            partial(self.plaid_client.get_account_balances, access_token)
        )
        updated = 0
        for remote in remote_accounts:
            account = (
                db.query(FinancialAccount)
                .filter(
                    FinancialAccount.plaid_item_id == item.id,
                    FinancialAccount.plaid_account_id == remote.account_id,
                    FinancialAccount.is_manual.is_(False),
                )
                .first()
            )
            if account is None:
                logger.debug(
                    "No local account for Plaid account %s on item %s",
                    remote.account_id, item.item_id,
                )
                continue
            try:
                with db.begin_nested():
                    account.current_balance = remote.current_balance
                    account.available_balance = remote.available_balance
                    account.updated_at = utcnow()
            except SQLAlchemyError:
                logger.warning(
                    "Failed to update balance for account %s", account.id, exc_info=True
                )
                continue
            updated += 1
        return updated

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _mark_item_failed(
        db: Session,
        item: PlaidItem,
        error_msg: str,
        error_code: str | None = None,
    ) -> None:
        """Roll back the failed Item's pending work and record the error on it.

        Args:
            db: Database session
            item: The Item that failed
            error_msg: Error message to store on the Item
            error_code: Provider error code, if one was reported
        """
        db.rollback()
        try:
            PlaidItemService.mark_item_error(db, item, error_msg, error_code)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error("Could not record error on item %s", item.item_id, exc_info=True)
