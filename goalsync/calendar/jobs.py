"""Entry points for running sync work outside a request.

Each job opens its own database session and holds the user's sync lock for
its whole duration, so two operations for the same user never race on token
refreshes or mapping rows. Jobs for different users run concurrently.
"""
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlmodel import Session

from goalsync.calendar.client import AuthenticationError, CalendarError, QuotaExceededError
from goalsync.calendar.credentials import CredentialStore
from goalsync.calendar.sync import CalendarSyncService, SyncOutcome, resolve_syncable
from goalsync.core.database import engine
from goalsync.models import SyncableKind, SyncableRef

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_user_locks: dict[int, threading.Lock] = {}
# Jobs holding or waiting for each lock in _user_locks
_lock_users: dict[int, int] = {}


@contextmanager
def user_sync_lock(user_id: int) -> Iterator[None]:
    """Serialize sync operations for one user.

    A user's lock is dropped once no job holds or waits for it.
    """
    with _locks_guard:
        lock = _user_locks.setdefault(user_id, threading.Lock())
        _lock_users[user_id] = _lock_users.get(user_id, 0) + 1
    try:
        with lock:
            yield
    finally:
        with _locks_guard:
            _lock_users[user_id] -= 1
            if not _lock_users[user_id]:
                del _lock_users[user_id]
                del _user_locks[user_id]


def build_sync_service(session: Session, user_id: int) -> CalendarSyncService:
    return CalendarSyncService(session, user_id)


def sync_entity_job(user_id: int, kind: SyncableKind | str, syncable_id: int) -> None:
    """Sync one goal or review for one user."""
    ref = SyncableRef(SyncableKind(kind), syncable_id)
    with user_sync_lock(user_id), Session(engine) as session:
        service = build_sync_service(session, user_id)
        if not service.sync_enabled:
            return

        entity = resolve_syncable(session, ref)
        try:
            if entity is None:
                service.remove_syncable(ref)
            elif ref.kind is SyncableKind.GOAL:
                service.sync_goal(entity)
            else:
                service.sync_review(entity)
        except QuotaExceededError as e:
            logger.warning(f"Sync of {ref} for user {user_id} rate limited: {e}")
            raise
        except AuthenticationError as e:
            # Credential already marked; retrying cannot help until reconnect
            logger.error(f"Sync of {ref} for user {user_id} failed authentication: {e}")


def full_sync_job(user_id: int) -> SyncOutcome | None:
    """Run a full sync for one user. Returns None if it did not complete."""
    with user_sync_lock(user_id), Session(engine) as session:
        service = build_sync_service(session, user_id)
        try:
            return service.full_sync()
        except QuotaExceededError as e:
            logger.warning(f"Full sync for user {user_id} rate limited: {e}")
        except AuthenticationError as e:
            logger.error(f"Full sync for user {user_id} failed authentication: {e}")
        except Exception as e:
            logger.error(f"Full sync for user {user_id} failed: {e}")
        return None


def remove_syncable_job(user_id: int, kind: SyncableKind | str, syncable_id: int) -> None:
    """Remove the event of an entity that is being deleted."""
    ref = SyncableRef(SyncableKind(kind), syncable_id)
    with user_sync_lock(user_id), Session(engine) as session:
        service = build_sync_service(session, user_id)
        try:
            service.remove_syncable(ref)
        except CalendarError as e:
            logger.error(f"Failed to remove calendar event for {ref} (user {user_id}): {e}")


def remove_event_job(user_id: int, google_event_id: str, google_calendar_id: str) -> None:
    """Delete a remote event after its local entity and mapping are gone."""
    with user_sync_lock(user_id), Session(engine) as session:
        service = build_sync_service(session, user_id)
        try:
            service.remove_event(google_event_id, google_calendar_id)
        except CalendarError as e:
            logger.error(f"Failed to delete calendar event {google_event_id} (user {user_id}): {e}")


def periodic_sync_job() -> dict:
    """Full sync for every active credential with a usable token.

    One user's failure never stops the others.
    """
    with Session(engine) as session:
        user_ids = [credential.user_id for credential in CredentialStore(session).active_and_valid()]

    stats = {"synced": 0, "failed": 0}
    for user_id in user_ids:
        try:
            outcome = full_sync_job(user_id)
        except Exception as e:
            logger.error(f"Periodic sync for user {user_id} failed: {e}")
            outcome = None
        if outcome is None:
            stats["failed"] += 1
        else:
            stats["synced"] += 1

    logger.info(f"Periodic calendar sync finished: {stats}")
    return stats
