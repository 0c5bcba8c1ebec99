"""Persistence operations for Google Calendar credentials.

All credential mutations go through ``CredentialStore`` and are committed
immediately, so a token refreshed in the middle of a sync is the one every
later request uses.
"""
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete
from sqlmodel import Session, select

from goalsync.calendar.oauth import TokenSet
from goalsync.models import CalendarSyncMapping, GoogleCalendarCredential, SyncStatus
from goalsync.models.credential import DEFAULT_REFRESH_WINDOW

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("access_token", "refresh_token", "calendar_id", "token_expires_at")

WRITABLE_FIELDS = {
    "access_token",
    "refresh_token",
    "token_expires_at",
    "calendar_id",
    "calendar_name",
    "account_email",
    "sync_status",
    "last_sync_at",
    "last_error",
}


class InvalidCredentialError(ValueError):
    """A credential would be saved without a required field."""


class CredentialStore:
    """Reads and writes ``GoogleCalendarCredential`` rows."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: int) -> GoogleCalendarCredential | None:
        statement = select(GoogleCalendarCredential).where(
            GoogleCalendarCredential.user_id == user_id
        )
        return self.session.exec(statement).first()

    def save(self, user_id: int, **fields) -> GoogleCalendarCredential:
        """Create the user's credential, or update it if one exists."""
        unknown = set(fields) - WRITABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown credential fields: {', '.join(sorted(unknown))}")

        credential = self.get(user_id)
        if credential is None:
            fields.setdefault("sync_status", SyncStatus.ACTIVE)
            missing = [name for name in REQUIRED_FIELDS if not fields.get(name)]
            if missing:
                raise InvalidCredentialError(
                    f"Missing required credential fields: {', '.join(missing)}"
                )
            credential = GoogleCalendarCredential(user_id=user_id, **fields)
            logger.info(f"Created calendar credential for user {user_id}")
        else:
            empty = [
                name for name in REQUIRED_FIELDS if name in fields and not fields[name]
            ]
            if empty:
                raise InvalidCredentialError(
                    f"Required credential fields cannot be empty: {', '.join(empty)}"
                )
            for name, value in fields.items():
                setattr(credential, name, value)
            logger.info(f"Updated calendar credential for user {user_id}")

        return self._commit(credential)

    def update_tokens(
        self, credential: GoogleCalendarCredential, tokens: TokenSet
    ) -> GoogleCalendarCredential:
        """Store refreshed tokens, keeping the old refresh token if none was issued."""
        credential.access_token = tokens.access_token
        credential.token_expires_at = tokens.expires_at
        credential.refresh_token = tokens.refresh_token or credential.refresh_token
        return self._commit(credential)

    def mark_error(
        self, credential: GoogleCalendarCredential, message: str
    ) -> GoogleCalendarCredential:
        logger.warning(f"Calendar credential for user {credential.user_id} marked as error: {message}")
        credential.sync_status = SyncStatus.ERROR
        credential.last_error = message
        return self._commit(credential)

    def mark_synced(self, credential: GoogleCalendarCredential) -> GoogleCalendarCredential:
        credential.sync_status = SyncStatus.ACTIVE
        credential.last_sync_at = datetime.now(UTC)
        credential.last_error = None
        return self._commit(credential)

    def pause(self, credential: GoogleCalendarCredential) -> GoogleCalendarCredential:
        credential.sync_status = SyncStatus.PAUSED
        return self._commit(credential)

    def resume(self, credential: GoogleCalendarCredential) -> GoogleCalendarCredential:
        credential.sync_status = SyncStatus.ACTIVE
        credential.last_error = None
        return self._commit(credential)

    def delete(self, credential: GoogleCalendarCredential) -> int:
        """Delete the credential and every mapping of its user.

        Remote events are left in place; without a credential there is no way
        to reach them. Returns the number of mappings removed.
        """
        user_id = credential.user_id
        result = self.session.exec(
            delete(CalendarSyncMapping).where(CalendarSyncMapping.user_id == user_id)
        )
        self.session.delete(credential)
        self.session.commit()
        logger.info(
            f"Disconnected calendar for user {user_id}, removed {result.rowcount} mappings"
        )
        return result.rowcount

    def active_and_valid(self) -> list[GoogleCalendarCredential]:
        """Active credentials whose access token has not expired yet."""
        statement = (
            select(GoogleCalendarCredential)
            .where(GoogleCalendarCredential.sync_status == SyncStatus.ACTIVE)
            .where(GoogleCalendarCredential.token_expires_at > datetime.now(UTC))
            .order_by(GoogleCalendarCredential.user_id)
        )
        return list(self.session.exec(statement).all())

    def needing_refresh(
        self, window: timedelta = DEFAULT_REFRESH_WINDOW
    ) -> list[GoogleCalendarCredential]:
        """Credentials whose token expires within ``window`` (or already has)."""
        statement = select(GoogleCalendarCredential).where(
            GoogleCalendarCredential.token_expires_at < datetime.now(UTC) + window
        )
        return list(self.session.exec(statement).all())

    def _commit(self, credential: GoogleCalendarCredential) -> GoogleCalendarCredential:
        credential.updated_at = datetime.now(UTC)
        self.session.add(credential)
        self.session.commit()
        self.session.refresh(credential)
        return credential
