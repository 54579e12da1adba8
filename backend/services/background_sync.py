"""Background historical transaction sync.

A freshly linked Item can have years of history, far more than fits in
one request. ``start_historical_sync`` records a ``pending`` progress row
on the PlaidItem, submits the cursor loop to a thread pool, and returns
right away. The UI then polls ``get_sync_status``.

The worker runs on its own database session and commits page by page,
checkpointing the cursor with each page, so whatever finished before a
timeout or failure is kept and the next sync resumes from there.

Safety valves on top of the normal cursor loop:

- wall-clock ceiling (``HISTORICAL_SYNC_MAX_SECONDS``), ends in ``timeout``
- page ceiling (``SYNC_MAX_PAGES``), finishes normally as ``completed``
"""

import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import lru_cache, partial
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from config import settings
from database import get_session_local
from integrations.plaid_client import PlaidClient
from integrations.provider_protocol import AggregationClient
from models import PlaidItem
from models.utils import as_utc, utcnow
from services.retry import with_retry
from services.transaction_writer import TransactionWriter

logger = logging.getLogger(__name__)

# Shown while too little progress has been made to extrapolate
DEFAULT_ETA_SECONDS = 20
ETA_MIN_PROGRESS = 10


class HistoricalSyncStatus(str, Enum):
    PENDING = "pending"  # Job queued, not started
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"  # Exceeded the wall-clock ceiling


@dataclass
class SyncProgress:
    """Snapshot of a historical sync, as shown to a polling client."""

    status: HistoricalSyncStatus
    progress: int  # 0-100
    transaction_count: int
    message: str
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimated_time_remaining: int | None = None  # seconds

    @property
    def is_in_progress(self) -> bool:
        return self.status in (HistoricalSyncStatus.PENDING, HistoricalSyncStatus.SYNCING)

    @property
    def is_completed(self) -> bool:
        return self.status == HistoricalSyncStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status in (HistoricalSyncStatus.FAILED, HistoricalSyncStatus.TIMEOUT)


@dataclass
class HistoricalSyncJob:
    """Handle returned by ``start_historical_sync``."""

    sync_id: str
    future: Future | None = None


@lru_cache
def get_background_executor() -> ThreadPoolExecutor:
    """Process-wide pool for detached sync jobs."""
    return ThreadPoolExecutor(
        max_workers=settings.HISTORICAL_SYNC_WORKERS,
        thread_name_prefix="historical-sync",
    )


def estimate_progress(iteration: int) -> int:
    """Rough percent complete after ``iteration`` pages.

    Most Items finish in 5-15 pages; the estimate never reaches 100 until
    the feed reports no more pages.
    """
    return min(95, 5 + iteration * 6)


class BackgroundSyncService:
    """Runs the initial historical sync for an Item off the request path."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        plaid_client: Optional[AggregationClient] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        now: Callable[[], datetime] = utcnow,
        max_duration_seconds: float | None = None,
        max_pages: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self._plaid_client = plaid_client
        self._executor = executor
        self._now = now
        self._max_duration = (
            max_duration_seconds
            if max_duration_seconds is not None
            else settings.HISTORICAL_SYNC_MAX_SECONDS
        )
        self._max_pages = max_pages if max_pages is not None else settings.SYNC_MAX_PAGES
        self._sleep = sleep

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory

    @property
    def plaid_client(self) -> AggregationClient:
        if self._plaid_client is None:
            self._plaid_client = PlaidClient()
        return self._plaid_client

    @property
    def executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = get_background_executor()
        return self._executor

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start_historical_sync(
        self, user_id: str, item_id: str, access_token: str
    ) -> HistoricalSyncJob:
        """Record a pending job and hand the sync to the executor.

        Returns before any provider call is made.

        Raises:
            ValueError: If no PlaidItem exists for ``item_id``.
        """
        logger.info("Starting historical sync for item %s", item_id)
        db = self.session_factory()
        try:
            item = self._get_item(db, item_id)
            item.sync_started_at = self._now()
            item.sync_completed_at = None
            self._write_progress(
                db,
                item,
                HistoricalSyncStatus.PENDING,
                progress=0,
                transaction_count=0,
                message="Preparing to sync transactions...",
            )
        finally:
            db.close()

        future = self.executor.submit(self._run_guarded, user_id, item_id, access_token)
        return HistoricalSyncJob(sync_id=item_id, future=future)

    def _run_guarded(self, user_id: str, item_id: str, access_token: str) -> SyncProgress | None:
        """Error boundary for the detached task; nothing escapes the thread."""
        try:
            return self.run_historical_sync(user_id, item_id, access_token)
        except Exception as e:
            logger.error("Fatal error in historical sync for item %s", item_id, exc_info=True)
            db = self.session_factory()
            try:
                item = db.query(PlaidItem).filter(PlaidItem.item_id == item_id).first()
                if item is not None:
                    item.sync_completed_at = self._now()
                    return self._write_progress(
                        db,
                        item,
                        HistoricalSyncStatus.FAILED,
                        progress=0,
                        transaction_count=0,
                        message="Sync failed unexpectedly",
                        error=str(e),
                    )
            except Exception:
                db.rollback()
                logger.error("Could not record failure for item %s", item_id, exc_info=True)
            finally:
                db.close()
            return None

    def run_historical_sync(
        self, user_id: str, item_id: str, access_token: str
    ) -> SyncProgress:
        """The long-running part: walk the feed for one Item.

        Always returns the terminal progress snapshot (completed, failed
        or timeout); expected failures are recorded, not raised.
        """
        db = self.session_factory()
        try:
            item = self._get_item(db, item_id)
            started = self._now()
            self._write_progress(
                db,
                item,
                HistoricalSyncStatus.SYNCING,
                progress=5,
                transaction_count=0,
                message="Fetching transactions from your bank...",
            )

            writer = TransactionWriter(db, user_id, item)
            cursor = item.transactions_cursor
            has_more = True
            iterations = 0
            total = 0
            progress = 5

            try:
                while has_more and iterations < self._max_pages:
                    elapsed = (self._now() - started).total_seconds()
                    if elapsed > self._max_duration:
                        logger.warning(
                            "Historical sync for item %s timed out after %d pages (%.0fs)",
                            item_id, iterations, elapsed,
                        )
                        item.sync_completed_at = self._now()
                        return self._write_progress(
                            db,
                            item,
                            HistoricalSyncStatus.TIMEOUT,
                            progress=progress,
                            transaction_count=total,
                            message="Sync taking longer than expected. Will retry automatically.",
                        )

                    iterations += 1
                    page = with_retry(
                        partial(self.plaid_client.sync_transactions, access_token, cursor),
                        max_retries=settings.RETRY_MAX_RETRIES,
                        base_delay=settings.RETRY_BASE_DELAY,
                        max_delay=settings.RETRY_MAX_DELAY,
                        sleep=self._sleep,
                    )
                    applied = writer.apply_page(page)

                    # Records, cursor checkpoint and progress commit together
                    total += applied.applied
                    progress = estimate_progress(iterations)
                    cursor = page.next_cursor
                    has_more = page.has_more
                    item.transactions_cursor = cursor
                    self._write_progress(
                        db,
                        item,
                        HistoricalSyncStatus.SYNCING,
                        progress=progress,
                        transaction_count=total,
                        message=f"Syncing transactions... ({total} found)",
                    )
                    logger.debug(
                        "Historical sync item %s page %d: +%d, has_more=%s",
                        item_id, iterations, applied.applied, has_more,
                    )

                if has_more:
                    logger.warning(
                        "Historical sync for item %s stopped at the %d-page ceiling",
                        item_id, iterations,
                    )

                item.last_sync = self._now()
                item.sync_completed_at = self._now()
                snapshot = self._write_progress(
                    db,
                    item,
                    HistoricalSyncStatus.COMPLETED,
                    progress=100,
                    transaction_count=total,
                    message=(
                        f"Successfully synced {total} transactions!"
                        if total > 0
                        else "Account connected! No transactions found."
                    ),
                )
                logger.info(
                    "Historical sync completed for item %s: %d transactions in %d pages",
                    item_id, total, iterations,
                )
                return snapshot

            except Exception as e:
                db.rollback()
                logger.error("Historical sync failed for item %s: %s", item_id, e, exc_info=True)
                item.sync_completed_at = self._now()
                return self._write_progress(
                    db,
                    item,
                    HistoricalSyncStatus.FAILED,
                    progress=0,
                    transaction_count=0,
                    message="Failed to sync transactions. Please try again.",
                    error=str(e),
                )
        finally:
            db.close()

    def get_sync_status(self, db: Session, item_id: str) -> SyncProgress | None:
        """Current progress for an Item, or None if it never started one."""
        item = db.query(PlaidItem).filter(PlaidItem.item_id == item_id).first()
        if item is None or not item.sync_status:
            return None
        snapshot = self._snapshot(item)
        snapshot.estimated_time_remaining = self._estimate_remaining(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get_item(db: Session, item_id: str) -> PlaidItem:
        item = db.query(PlaidItem).filter(PlaidItem.item_id == item_id).first()
        if item is None:
            raise ValueError(f"Plaid item not found: {item_id}")
        return item

    def _write_progress(
        self,
        db: Session,
        item: PlaidItem,
        status: HistoricalSyncStatus,
        progress: int,
        transaction_count: int,
        message: str,
        error: str | None = None,
    ) -> SyncProgress:
        item.sync_status = status.value
        item.sync_progress = progress
        item.sync_transaction_count = transaction_count
        item.sync_message = message
        item.sync_error = error
        db.commit()
        return self._snapshot(item)

    @staticmethod
    def _snapshot(item: PlaidItem) -> SyncProgress:
        return SyncProgress(
            status=HistoricalSyncStatus(item.sync_status),
            progress=item.sync_progress or 0,
            transaction_count=item.sync_transaction_count or 0,
            message=item.sync_message or "",
            error=item.sync_error,
            started_at=as_utc(item.sync_started_at),
            completed_at=as_utc(item.sync_completed_at),
        )

    def _estimate_remaining(self, snapshot: SyncProgress) -> int | None:
        """Seconds left, extrapolated from elapsed time and percent done."""
        if snapshot.status != HistoricalSyncStatus.SYNCING or snapshot.started_at is None:
            return None
        if snapshot.progress <= ETA_MIN_PROGRESS:
            return DEFAULT_ETA_SECONDS
        elapsed = (self._now() - snapshot.started_at).total_seconds()
        total_estimated = elapsed / snapshot.progress * 100
        return max(0, math.ceil(total_estimated - elapsed))
