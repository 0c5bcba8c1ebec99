"""Goal model and its assignments.

Goals are created and edited by the goal-tracking product. The sync engine
reads the due date, status and assignee list to decide whether a goal should
appear on an assignee's calendar.
"""

from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlmodel import Field, Relationship, SQLModel

from goalsync.models.syncable import SyncableKind, SyncableRef

if TYPE_CHECKING:
    from goalsync.models.user import Family, User


class GoalStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    AT_RISK = "at_risk"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class GoalAssignment(SQLModel, table=True):
    """Link between a goal and one of its assignees."""
    goal_id: int = Field(foreign_key="goal.id", primary_key=True)
    user_id: int = Field(foreign_key="user.id", primary_key=True)


class Goal(SQLModel, table=True):
    """A family goal, optionally due on a given date.

    Attributes:
        id: Primary key.
        family_id: Owning family.
        title: Short goal title, used as the event summary.
        description: Free-form description copied into the event.
        due_date: Date the goal is due. Goals without one never get events.
        status: Lifecycle state; completed and abandoned goals get no events.
        family: The owning Family.
        assignees: Users responsible for the goal. Each assignee with an
            active credential gets their own copy of the event.
    """
    syncable_kind: ClassVar[SyncableKind] = SyncableKind.GOAL

    id: int | None = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    title: str
    description: str | None = None
    due_date: date | None = None
    status: GoalStatus = Field(default=GoalStatus.NOT_STARTED)

    # Relationships
    family: Optional["Family"] = Relationship()
    assignees: list["User"] = Relationship(link_model=GoalAssignment)

    @property
    def syncable_ref(self) -> SyncableRef:
        return SyncableRef(SyncableKind.GOAL, self.id)

    @property
    def user_ids(self) -> list[int]:
        """IDs of every user this goal should be synced for."""
        return [user.id for user in self.assignees]
