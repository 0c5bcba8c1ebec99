"""Periodic review models.

Each review kind covers one period (week, month, quarter, year) for one user
in one family. Incomplete reviews get a reminder event on the last day of
their period.
"""

from datetime import date
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlmodel import Field, Relationship, SQLModel

from goalsync.models.syncable import SyncableKind, SyncableRef

if TYPE_CHECKING:
    from goalsync.models.user import Family


class WeeklyReview(SQLModel, table=True):
    """Weekly review starting on ``week_start_date``."""
    syncable_kind: ClassVar[SyncableKind] = SyncableKind.WEEKLY_REVIEW

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    family_id: int = Field(foreign_key="family.id")
    week_start_date: date
    completed: bool = Field(default=False)

    family: Optional["Family"] = Relationship()

    @property
    def syncable_ref(self) -> SyncableRef:
        return SyncableRef(self.syncable_kind, self.id)


class MonthlyReview(SQLModel, table=True):
    """Monthly review; ``month`` is the first day of the reviewed month."""
    syncable_kind: ClassVar[SyncableKind] = SyncableKind.MONTHLY_REVIEW

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    family_id: int = Field(foreign_key="family.id")
    month: date
    completed: bool = Field(default=False)

    family: Optional["Family"] = Relationship()

    @property
    def syncable_ref(self) -> SyncableRef:
        return SyncableRef(self.syncable_kind, self.id)


class QuarterlyReview(SQLModel, table=True):
    """Quarterly review starting on ``quarter_start_date`` (Jan/Apr/Jul/Oct 1)."""
    syncable_kind: ClassVar[SyncableKind] = SyncableKind.QUARTERLY_REVIEW

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    family_id: int = Field(foreign_key="family.id")
    quarter_start_date: date
    completed: bool = Field(default=False)

    family: Optional["Family"] = Relationship()

    @property
    def syncable_ref(self) -> SyncableRef:
        return SyncableRef(self.syncable_kind, self.id)


class AnnualReview(SQLModel, table=True):
    """Annual review for ``year``."""
    syncable_kind: ClassVar[SyncableKind] = SyncableKind.ANNUAL_REVIEW

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    family_id: int = Field(foreign_key="family.id")
    year: int
    completed: bool = Field(default=False)

    family: Optional["Family"] = Relationship()

    @property
    def syncable_ref(self) -> SyncableRef:
        return SyncableRef(self.syncable_kind, self.id)


Review = WeeklyReview | MonthlyReview | QuarterlyReview | AnnualReview
