"""Google Calendar credential model.

This module defines the GoogleCalendarCredential model which stores a user's
OAuth2 tokens together with the calendar they chose to sync into. Tokens are
obtained through the connect flow and refreshed automatically before they
expire.
"""

from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from goalsync.core.types import EncryptedString, UTCDateTime

DEFAULT_REFRESH_WINDOW = timedelta(minutes=5)


class SyncStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class GoogleCalendarCredential(SQLModel, table=True):
    """Stored OAuth2 credentials and target calendar for one user.

    Exactly one credential exists per connected user. Deleting it
    disconnects the user and discards every mapping they own (see
    ``CredentialStore.delete``).

    Attributes:
        id: Unique identifier (UUID).
        user_id: Owner of the credential (unique).
        access_token: Short-lived bearer token. Encrypted at rest.
        refresh_token: Long-lived token used to mint new access tokens.
            Encrypted at rest.
        token_expires_at: When the access token expires.
        calendar_id: Google calendar receiving the synced events.
        calendar_name: Human-readable calendar name, for display.
        account_email: Google account the calendar belongs to.
        sync_status: "active", "paused" (user choice) or "error" (the
            credential is broken and the user must reconnect).
        last_sync_at: When the last full sync completed.
        last_error: Message from the last failure, cleared on success.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, unique=True)
    access_token: str = Field(sa_column=Column(EncryptedString, nullable=False))
    refresh_token: str = Field(sa_column=Column(EncryptedString, nullable=False))
    token_expires_at: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    calendar_id: str
    calendar_name: str | None = None
    account_email: str | None = None
    sync_status: SyncStatus = Field(default=SyncStatus.ACTIVE)
    last_sync_at: datetime | None = Field(default=None, sa_column=Column(UTCDateTime))
    last_error: str | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), sa_column=Column(UTCDateTime)
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), sa_column=Column(UTCDateTime)
    )

    @property
    def is_active(self) -> bool:
        return self.sync_status == SyncStatus.ACTIVE

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once the access token is past its expiry."""
        now = now or datetime.now(UTC)
        return self.token_expires_at < now

    def is_expiring_soon(
        self,
        window: timedelta = DEFAULT_REFRESH_WINDOW,
        now: datetime | None = None,
    ) -> bool:
        """True if the access token expires within ``window`` (or already has)."""
        now = now or datetime.now(UTC)
        return self.token_expires_at < now + window
