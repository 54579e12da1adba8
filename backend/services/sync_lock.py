"""Database-backed locks serializing sync runs per user.

Each (user, lock type) pair can be held by one run at a time. The unique
constraint on ``sync_locks`` does the actual exclusion, so the lock works
across processes and workers, not just threads. Every lock carries an
absolute expiry; a crashed sync therefore blocks the user for at most
one TTL.

Lock operations never raise. Contention and storage failures come back
as an unacquired :class:`LockResult` or a ``False`` release, and are
logged.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from models import SyncLock
from models.utils import utcnow

logger = logging.getLogger(__name__)


class SyncLockType(str, Enum):
    """Kinds of sync that lock independently of one another."""

    BALANCE_SYNC = "balance_sync"
    TRANSACTION_SYNC = "transaction_sync"
    FULL_SYNC = "full_sync"


@dataclass
class LockResult:
    """Outcome of an acquire attempt."""

    acquired: bool
    lock_id: str | None = None
    message: str = ""


def contention_message(lock_type: str) -> str:
    return f"A {lock_type} operation is already in progress for this user"


class SyncLockManager:
    """Acquire and release sync locks stored in the ``sync_locks`` table.

    Locks are committed as soon as they are written so other sessions see
    them immediately; callers should not rely on the lock sharing a
    transaction with their own work.
    """

    def __init__(
        self,
        ttl_seconds: int | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self._ttl = timedelta(
            seconds=ttl_seconds if ttl_seconds is not None else settings.SYNC_LOCK_TTL_SECONDS
        )
        self._now = now

    def cleanup_expired_locks(self, db: Session) -> int:
        """Delete every lock whose expiry has passed.

        Best-effort: a failure is logged and reported as zero removed.
        """
        try:
            removed = (
                db.query(SyncLock)
                .filter(SyncLock.expires_at <= self._now())
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning("Failed to clean up expired sync locks", exc_info=True)
            return 0
        if removed:
            logger.info("Removed %d expired sync lock(s)", removed)
        return removed

    def acquire(self, db: Session, user_id: str, lock_type: str) -> LockResult:
        """Try to take the lock for ``(user_id, lock_type)``.

        Returns immediately; there is no waiting. An already-held lock is
        reported as ``acquired=False`` with a human-readable message.
        """
        try:
            lock_type = SyncLockType(lock_type).value
        except ValueError:
            logger.error("Unknown sync lock type %r for user %s", lock_type, user_id)
            return LockResult(acquired=False, message=f"Unknown sync lock type: {lock_type}")

        self.cleanup_expired_locks(db)

        try:
            now = self._now()
            lock = SyncLock(
                user_id=user_id,
                lock_type=lock_type,
                acquired_at=now,
                expires_at=now + self._ttl,
            )
            try:
                with db.begin_nested():
                    db.add(lock)
            except IntegrityError:
                # Savepoint already rolled back; the session stays usable
                logger.info(
                    "Sync lock contention: %s already held for user %s",
                    lock_type, user_id,
                )
                return LockResult(acquired=False, message=contention_message(lock_type))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error(
                "Failed to acquire %s lock for user %s", lock_type, user_id, exc_info=True
            )
            return LockResult(acquired=False, message="Failed to acquire sync lock")
        except Exception:
            db.rollback()
            logger.error(
                "Unexpected error acquiring %s lock for user %s",
                lock_type, user_id, exc_info=True,
            )
            return LockResult(
                acquired=False, message="Failed to acquire sync lock due to exception"
            )

        logger.debug("Acquired %s lock %s for user %s", lock_type, lock.id, user_id)
        return LockResult(acquired=True, lock_id=lock.id, message="Lock acquired")

    def release(self, db: Session, lock_id: str | None) -> bool:
        """Release a lock by id. Returns False (and logs) on failure."""
        if not lock_id:
            return False
        try:
            db.query(SyncLock).filter(SyncLock.id == lock_id).delete(
                synchronize_session=False
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Failed to release sync lock %s", lock_id, exc_info=True)
            return False
        logger.debug("Released sync lock %s", lock_id)
        return True

    def is_locked(self, db: Session, user_id: str, lock_type: str) -> bool:
        """Whether an unexpired lock is held for ``(user_id, lock_type)``."""
        try:
            lock_type = SyncLockType(lock_type).value
        except ValueError:
            logger.warning("Unknown sync lock type %r for user %s", lock_type, user_id)
            return False

        self.cleanup_expired_locks(db)
        try:
            lock = (
                db.query(SyncLock)
                .filter(
                    SyncLock.user_id == user_id,
                    SyncLock.lock_type == lock_type,
                    SyncLock.expires_at > self._now(),
                )
                .first()
            )
        except SQLAlchemyError:
            logger.warning("Failed to check sync lock for user %s", user_id, exc_info=True)
            return False
        return lock is not None

    def force_release_user_locks(self, db: Session, user_id: str) -> int:
        """Drop every lock held by a user (admin / recovery path)."""
        try:
            removed = (
                db.query(SyncLock)
                .filter(SyncLock.user_id == user_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.error("Failed to force-release locks for user %s", user_id, exc_info=True)
            return 0
        logger.warning("Force-released %d sync lock(s) for user %s", removed, user_id)
        return removed
