from goalsync.models.credential import GoogleCalendarCredential, SyncStatus
from goalsync.models.goal import Goal, GoalAssignment, GoalStatus
from goalsync.models.mapping import CalendarSyncMapping
from goalsync.models.review import (
    AnnualReview,
    MonthlyReview,
    QuarterlyReview,
    Review,
    WeeklyReview,
)
from goalsync.models.syncable import REVIEW_KINDS, SyncableKind, SyncableRef
from goalsync.models.user import Family, User

SYNCABLE_MODELS = {
    SyncableKind.GOAL: Goal,
    SyncableKind.WEEKLY_REVIEW: WeeklyReview,
    SyncableKind.MONTHLY_REVIEW: MonthlyReview,
    SyncableKind.QUARTERLY_REVIEW: QuarterlyReview,
    SyncableKind.ANNUAL_REVIEW: AnnualReview,
}

__all__ = [
    "AnnualReview",
    "CalendarSyncMapping",
    "Family",
    "Goal",
    "GoalAssignment",
    "GoalStatus",
    "GoogleCalendarCredential",
    "MonthlyReview",
    "QuarterlyReview",
    "REVIEW_KINDS",
    "Review",
    "SYNCABLE_MODELS",
    "SyncStatus",
    "SyncableKind",
    "SyncableRef",
    "User",
    "WeeklyReview",
]
