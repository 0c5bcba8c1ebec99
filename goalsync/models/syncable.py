"""Identity of entities that can be mirrored to Google Calendar.

A mapping row references its local entity by a kind tag plus a numeric id
rather than a database-level polymorphic foreign key. ``SyncableRef`` is the
in-memory form of that reference.
"""

from enum import Enum
from typing import NamedTuple


class SyncableKind(str, Enum):
    """The five entity kinds that may own a calendar event."""

    GOAL = "Goal"
    WEEKLY_REVIEW = "WeeklyReview"
    MONTHLY_REVIEW = "MonthlyReview"
    QUARTERLY_REVIEW = "QuarterlyReview"
    ANNUAL_REVIEW = "AnnualReview"

    @property
    def is_review(self) -> bool:
        return self is not SyncableKind.GOAL


REVIEW_KINDS = (
    SyncableKind.WEEKLY_REVIEW,
    SyncableKind.MONTHLY_REVIEW,
    SyncableKind.QUARTERLY_REVIEW,
    SyncableKind.ANNUAL_REVIEW,
)


class SyncableRef(NamedTuple):
    """Reference to one syncable entity."""

    kind: SyncableKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}#{self.id}"
