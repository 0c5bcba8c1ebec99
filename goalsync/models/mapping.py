"""Mapping between a local entity and its Google Calendar event."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from goalsync.core.types import UTCDateTime
from goalsync.models.syncable import SyncableKind, SyncableRef


class CalendarSyncMapping(SQLModel, table=True):
    """Correlates one syncable entity with one remote event for one user.

    A user has at most one event per entity, and an event id is never
    claimed twice by the same user.

    Attributes:
        id: Unique identifier (UUID).
        user_id: User whose calendar holds the event.
        syncable_type: Kind tag of the local entity (``SyncableKind``).
        syncable_id: Primary key of the local entity.
        google_event_id: Event id in Google Calendar.
        google_calendar_id: Calendar the event was created in. Kept per
            mapping so events can still be found after the user switches
            calendars.
        etag: Version marker returned by Google, sent as If-Match on update.
        last_synced_at: When the event was last written.
    """
    __table_args__ = (
        UniqueConstraint("user_id", "google_event_id", name="uq_mapping_user_event"),
        UniqueConstraint(
            "user_id", "syncable_type", "syncable_id", name="uq_mapping_user_syncable"
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    syncable_type: SyncableKind
    syncable_id: int
    google_event_id: str
    google_calendar_id: str
    etag: str | None = None
    last_synced_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), sa_column=Column(UTCDateTime)
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), sa_column=Column(UTCDateTime)
    )

    @property
    def syncable_ref(self) -> SyncableRef:
        return SyncableRef(SyncableKind(self.syncable_type), self.syncable_id)
