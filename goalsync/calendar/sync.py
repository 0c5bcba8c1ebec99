"""Calendar synchronization service.

Mirrors goals and periodic reviews into a user's Google Calendar. Sync is
one-way: local entities are the source of truth and remote edits are
overwritten on the next update. Each entity is reconciled on its own, so a
sweep can stop at any point and be re-run safely.
"""
import calendar
import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from goalsync.calendar.client import (
    AuthenticationError,
    EventConflictError,
    EventData,
    EventNotFoundError,
    GoogleCalendarClient,
    QuotaExceededError,
)
from goalsync.calendar.credentials import CredentialStore
from goalsync.calendar.oauth import ConfigurationError, GoogleOAuthService
from goalsync.models import (
    REVIEW_KINDS,
    SYNCABLE_MODELS,
    CalendarSyncMapping,
    Goal,
    GoalAssignment,
    GoalStatus,
    Review,
    SyncableKind,
    SyncableRef,
)

logger = logging.getLogger(__name__)

EVENT_FOOTER = "Synced from your family goals"

REVIEW_LABELS = {
    SyncableKind.WEEKLY_REVIEW: "Weekly Review",
    SyncableKind.MONTHLY_REVIEW: "Monthly Review",
    SyncableKind.QUARTERLY_REVIEW: "Quarterly Review",
    SyncableKind.ANNUAL_REVIEW: "Annual Review",
}

# Failures that mean the credential is unusable, the API wants us to back
# off, or the deployment has no OAuth client. They stop a sweep instead of
# being isolated per entity.
SWEEP_ABORTING_ERRORS = (AuthenticationError, QuotaExceededError, ConfigurationError)


@dataclass
class SyncOutcome:
    """Result of a full sync.

    ``failed`` pairs every entity that could not be reconciled with the
    exception that stopped it.
    """
    succeeded: list[SyncableRef] = field(default_factory=list)
    failed: list[tuple[SyncableRef, Exception]] = field(default_factory=list)
    orphans_removed: list[SyncableRef] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> dict:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "orphans_removed": len(self.orphans_removed),
            "skipped": self.skipped,
        }


def goal_should_have_event(goal: Goal) -> bool:
    """A goal gets an event while it has a due date and is still open."""
    return goal.due_date is not None and goal.status not in (
        GoalStatus.COMPLETED,
        GoalStatus.ABANDONED,
    )


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_end_date(review: Review) -> date:
    """Last day of the period a review covers."""
    match review.syncable_kind:
        case SyncableKind.WEEKLY_REVIEW:
            return review.week_start_date + timedelta(days=6)
        case SyncableKind.MONTHLY_REVIEW:
            last_day = calendar.monthrange(review.month.year, review.month.month)[1]
            return review.month.replace(day=last_day)
        case SyncableKind.QUARTERLY_REVIEW:
            # Derived from the start date alone; a stored quarter number can
            # disagree with it around timezone boundaries.
            return _add_months(review.quarter_start_date, 3) - timedelta(days=1)
        case SyncableKind.ANNUAL_REVIEW:
            return date(review.year, 12, 31)
    raise ValueError(f"Not a review kind: {review.syncable_kind}")


def review_reminder_date(review: Review) -> date | None:
    """Date of the reminder event for a review, or None if it needs none."""
    if review.completed:
        return None
    return period_end_date(review)


def format_review_period(review: Review) -> str:
    match review.syncable_kind:
        case SyncableKind.WEEKLY_REVIEW:
            return f"Week of {review.week_start_date.strftime('%b %d, %Y')}"
        case SyncableKind.MONTHLY_REVIEW:
            return review.month.strftime("%B %Y")
        case SyncableKind.QUARTERLY_REVIEW:
            quarter = (review.quarter_start_date.month - 1) // 3 + 1
            return f"Q{quarter} {review.quarter_start_date.year}"
        case SyncableKind.ANNUAL_REVIEW:
            return str(review.year)
    raise ValueError(f"Not a review kind: {review.syncable_kind}")


def build_goal_event_data(goal: Goal) -> EventData:
    family_name = goal.family.name if goal.family else ""
    status = GoalStatus(goal.status).value.replace("_", " ").title() if goal.status else "Active"
    lines = [
        goal.description,
        "",
        f"Family: {family_name}",
        f"Status: {status}",
        "",
        EVENT_FOOTER,
    ]
    return EventData(
        summary=f"[Goal] {goal.title}",
        description="\n".join(line for line in lines if line is not None),
        event_date=goal.due_date,
    )


def build_review_event_data(review: Review, reminder_date: date) -> EventData:
    label = REVIEW_LABELS[review.syncable_kind]
    family_name = review.family.name if review.family else ""
    description = "\n".join([
        f"Time to complete your {label.lower()}!",
        "",
        f"Family: {family_name}",
        f"Period: {format_review_period(review)}",
        "",
        EVENT_FOOTER,
    ])
    return EventData(
        summary=f"[Review] {label} Due",
        description=description,
        event_date=reminder_date,
    )


def resolve_syncable(session: Session, ref: SyncableRef):
    """Load the entity a reference points to, or None if it no longer exists."""
    return session.get(SYNCABLE_MODELS[ref.kind], ref.id)


class CalendarSyncService:
    """Reconciles one user's goals and reviews with their Google Calendar."""

    def __init__(
        self,
        session: Session,
        user_id: int,
        client: GoogleCalendarClient | None = None,
        oauth: GoogleOAuthService | None = None,
    ):
        self.session = session
        self.user_id = user_id
        self.store = CredentialStore(session)
        self.credential = self.store.get(user_id)
        self._client = client
        self._oauth = oauth

    @property
    def sync_enabled(self) -> bool:
        return self.credential is not None and self.credential.is_active

    @property
    def calendar_client(self) -> GoogleCalendarClient:
        if self._client is None:
            self._client = GoogleCalendarClient(
                self.credential,
                self.store,
                oauth=self._oauth or GoogleOAuthService.from_settings(),
            )
        return self._client

    # ------------------------------------------------------------------
    # Single entities
    # ------------------------------------------------------------------

    def sync_goal(self, goal: Goal) -> None:
        """Create, update or remove the event for one goal."""
        if not self.sync_enabled or self.user_id not in goal.user_ids:
            return

        mapping = self.find_mapping(goal.syncable_ref)
        if goal_should_have_event(goal):
            event = build_goal_event_data(goal)
            if mapping:
                self._update_event(goal.syncable_ref, mapping, event)
            else:
                self._create_event(goal.syncable_ref, event)
        elif mapping:
            # Completed, abandoned, or the due date was cleared
            self._remove_mapping(mapping)

    def sync_review(self, review: Review) -> None:
        """Create, update or remove the reminder event for one review."""
        if not self.sync_enabled or review.user_id != self.user_id:
            return

        ref = review.syncable_ref
        mapping = self.find_mapping(ref)
        reminder_date = review_reminder_date(review)

        if reminder_date is None:
            if mapping:
                self._remove_mapping(mapping)
            return

        event = build_review_event_data(review, reminder_date)
        if mapping:
            self._update_event(ref, mapping, event)
        else:
            self._create_event(ref, event)

    def remove_syncable(self, ref: SyncableRef) -> bool:
        """Tear down the event of an entity that is being deleted.

        Returns True if a mapping existed.
        """
        mapping = self.find_mapping(ref)
        if mapping is None:
            return False
        self._remove_mapping(mapping)
        return True

    def remove_event(self, google_event_id: str, google_calendar_id: str) -> None:
        """Delete a remote event whose mapping is already gone."""
        if not self.sync_enabled:
            return
        self.calendar_client.delete_event(google_calendar_id, google_event_id)

    # ------------------------------------------------------------------
    # Full sync
    # ------------------------------------------------------------------

    def full_sync(self) -> SyncOutcome:
        """Reconcile every goal and review of the user, then drop orphans.

        Individual entity failures are recorded in the outcome and do not
        stop the sweep. Authentication, quota and OAuth configuration failures
        do and the exception propagates. Quota and configuration failures
        leave the credential untouched; anything else that escapes marks it
        as errored.
        """
        if not self.sync_enabled:
            logger.info(f"Calendar sync not enabled for user {self.user_id}, skipping full sync")
            return SyncOutcome(skipped=True)

        outcome = SyncOutcome()
        try:
            for goal in self._assigned_goals():
                self._sync_isolated(goal.syncable_ref, lambda g=goal: self.sync_goal(g), outcome)

            for kind in REVIEW_KINDS:
                for review in self._incomplete_reviews(kind):
                    self._sync_isolated(
                        review.syncable_ref, lambda r=review: self.sync_review(r), outcome
                    )

            self._cleanup_orphaned_goal_mappings(outcome)
        except QuotaExceededError:
            logger.warning(f"Full sync for user {self.user_id} rate limited, will retry later")
            self.session.rollback()
            raise
        except ConfigurationError as e:
            # Nothing wrong with the credential; leave its status alone
            logger.error(f"Full sync for user {self.user_id} aborted: {e}")
            self.session.rollback()
            raise
        except Exception as e:
            self.session.rollback()
            self.store.mark_error(self.credential, f"Full sync failed: {e}")
            raise

        self.store.mark_synced(self.credential)
        logger.info(f"Full sync completed for user {self.user_id}: {outcome.summary()}")
        return outcome

    def _sync_isolated(self, ref: SyncableRef, sync, outcome: SyncOutcome) -> None:
        try:
            sync()
        except SWEEP_ABORTING_ERRORS:
            raise
        except Exception as e:
            logger.error(f"Failed to sync {ref} for user {self.user_id}: {e}")
            self.session.rollback()
            outcome.failed.append((ref, e))
        else:
            outcome.succeeded.append(ref)

    def _assigned_goals(self) -> list[Goal]:
        statement = (
            select(Goal)
            .join(GoalAssignment, GoalAssignment.goal_id == Goal.id)
            .where(GoalAssignment.user_id == self.user_id)
            .order_by(Goal.id)
        )
        return list(self.session.exec(statement).all())

    def _incomplete_reviews(self, kind: SyncableKind) -> list[Review]:
        model = SYNCABLE_MODELS[kind]
        statement = (
            select(model)
            .where(model.user_id == self.user_id)
            .where(model.completed == False)  # noqa: E712
            .order_by(model.id)
        )
        return list(self.session.exec(statement).all())

    def _cleanup_orphaned_goal_mappings(self, outcome: SyncOutcome) -> None:
        """Remove goal events the user should no longer have.

        A goal mapping is orphaned when the goal was deleted or the user was
        unassigned from it.
        """
        statement = (
            select(CalendarSyncMapping)
            .where(CalendarSyncMapping.user_id == self.user_id)
            .where(CalendarSyncMapping.syncable_type == SyncableKind.GOAL)
        )
        for mapping in self.session.exec(statement).all():
            ref = mapping.syncable_ref
            goal = resolve_syncable(self.session, ref)
            if goal is not None and self.user_id in goal.user_ids:
                continue

            logger.info(f"Removing orphaned mapping for {ref} (user {self.user_id})")
            try:
                self._remove_mapping(mapping)
            except SWEEP_ABORTING_ERRORS:
                raise
            except Exception as e:
                logger.error(f"Failed to clean up orphaned mapping {mapping.id}: {e}")
                self.session.rollback()
                outcome.failed.append((ref, e))
            else:
                outcome.orphans_removed.append(ref)

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def find_mapping(self, ref: SyncableRef) -> CalendarSyncMapping | None:
        statement = (
            select(CalendarSyncMapping)
            .where(CalendarSyncMapping.user_id == self.user_id)
            .where(CalendarSyncMapping.syncable_type == ref.kind)
            .where(CalendarSyncMapping.syncable_id == ref.id)
        )
        return self.session.exec(statement).first()

    def _create_event(self, ref: SyncableRef, event: EventData) -> CalendarSyncMapping:
        calendar_id = self.credential.calendar_id
        result = self.calendar_client.create_event(calendar_id, event)

        mapping = CalendarSyncMapping(
            user_id=self.user_id,
            syncable_type=ref.kind,
            syncable_id=ref.id,
            google_event_id=result.id,
            google_calendar_id=calendar_id,
            etag=result.etag,
            last_synced_at=datetime.now(UTC),
        )
        self.session.add(mapping)
        try:
            self.session.commit()
        except IntegrityError:
            # Another sync for the same entity got there first; keep its
            # mapping and drop the duplicate remote event.
            self.session.rollback()
            logger.warning(f"Mapping for {ref} already exists, deleting duplicate event {result.id}")
            self.calendar_client.delete_event(calendar_id, result.id)
            return self.find_mapping(ref)

        logger.info(f"Created calendar event {result.id} for {ref} (user {self.user_id})")
        return mapping

    def _update_event(
        self, ref: SyncableRef, mapping: CalendarSyncMapping, event: EventData
    ) -> CalendarSyncMapping:
        client = self.calendar_client
        try:
            try:
                result = client.update_event(
                    mapping.google_calendar_id, mapping.google_event_id, event, etag=mapping.etag
                )
            except EventConflictError:
                # Edited remotely since our last write. Local state wins, so
                # retry once against the current version.
                remote = client.get_event(mapping.google_calendar_id, mapping.google_event_id)
                logger.info(f"Event {mapping.google_event_id} changed remotely, overwriting")
                result = client.update_event(
                    mapping.google_calendar_id, mapping.google_event_id, event, etag=remote.etag
                )
        except EventNotFoundError:
            # Deleted from Google Calendar; recreate it
            logger.info(f"Event {mapping.google_event_id} for {ref} missing remotely, recreating")
            self.session.delete(mapping)
            self.session.commit()
            return self._create_event(ref, event)

        mapping.etag = result.etag
        mapping.last_synced_at = datetime.now(UTC)
        self.session.add(mapping)
        self.session.commit()
        return mapping

    def _remove_mapping(self, mapping: CalendarSyncMapping) -> None:
        """Delete the remote event and the mapping.

        The mapping is dropped even when the remote delete fails, so a stale
        event never blocks future syncs of the entity.
        """
        event_id = mapping.google_event_id
        try:
            self.calendar_client.delete_event(mapping.google_calendar_id, event_id)
        finally:
            self.session.delete(mapping)
            self.session.commit()
        logger.info(f"Removed calendar event {event_id} for user {self.user_id}")
