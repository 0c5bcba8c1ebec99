"""Shared test fixtures."""

from datetime import UTC, date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from goalsync.calendar.client import (
    EventConflictError,
    EventNotFoundError,
    EventResult,
    RemoteEvent,
)
from goalsync.calendar.credentials import CredentialStore
from goalsync.calendar.oauth import TokenSet
from goalsync.calendar.sync import CalendarSyncService
from goalsync.core.database import get_session
from goalsync.main import app
from goalsync.models import (
    Family,
    Goal,
    GoalStatus,
    GoogleCalendarCredential,
    User,
)
from goalsync.routes.google_calendar import pending_authorizations


class FakeCalendarClient:
    """In-memory stand-in for GoogleCalendarClient.

    Events are kept per id with a version counter so etag conflicts can be
    simulated with ``edit_remotely``. Failures are injected per method via
    ``fail_next`` (one shot) or per event summary via ``fail_summaries``.
    """

    def __init__(self):
        self.events: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.fail_next: dict[str, Exception] = {}
        self.fail_summaries: dict[str, Exception] = {}
        self._counter = 0

    def _maybe_fail(self, method: str, summary: str | None = None):
        if summary in self.fail_summaries:
            raise self.fail_summaries[summary]
        error = self.fail_next.pop(method, None)
        if error is not None:
            raise error

    def create_event(self, calendar_id, event):
        self.calls.append(("create", calendar_id, event.summary))
        self._maybe_fail("create_event", event.summary)
        self._counter += 1
        event_id = f"evt-{self._counter}"
        self.events[event_id] = {
            "calendar_id": calendar_id,
            "data": event,
            "version": 1,
            "etag": f'"{event_id}-1"',
        }
        return EventResult(id=event_id, etag=self.events[event_id]["etag"])

    def update_event(self, calendar_id, event_id, event, etag=None):
        self.calls.append(("update", calendar_id, event_id, etag))
        self._maybe_fail("update_event", event.summary)
        stored = self.events.get(event_id)
        if stored is None:
            raise EventNotFoundError(f"Event not found: {event_id}")
        if etag and etag != stored["etag"]:
            raise EventConflictError(f"Event {event_id} was modified remotely")
        stored["data"] = event
        stored["version"] += 1
        stored["etag"] = f'"{event_id}-{stored["version"]}"'
        return EventResult(id=event_id, etag=stored["etag"])

    def delete_event(self, calendar_id, event_id):
        self.calls.append(("delete", calendar_id, event_id))
        self._maybe_fail("delete_event")
        self.events.pop(event_id, None)
        return True

    def get_event(self, calendar_id, event_id):
        self.calls.append(("get", calendar_id, event_id))
        stored = self.events.get(event_id)
        if stored is None:
            raise EventNotFoundError(f"Event not found: {event_id}")
        return RemoteEvent(
            id=event_id,
            etag=stored["etag"],
            summary=stored["data"].summary,
            start_date=stored["data"].event_date,
        )

    def edit_remotely(self, event_id: str):
        """Bump an event's version as if the user edited it in Google Calendar."""
        stored = self.events[event_id]
        stored["version"] += 1
        stored["etag"] = f'"{event_id}-{stored["version"]}"'

    def calls_of(self, kind: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == kind]


class FakeOAuthService:
    """Stand-in for GoogleOAuthService that never touches the network."""

    def __init__(self):
        self.refresh_calls: list[str] = []
        self.exchanged_codes: list[str] = []
        self.refresh_error: Exception | None = None
        self.exchange_error: Exception | None = None
        self.refresh_token_returned: str | None = None
        self.exchange_refresh_token: str | None = "refresh-from-consent"
        self.refresh_expires_in = timedelta(hours=1)

    def authorization_url(self, state, redirect_uri):
        return f"https://accounts.google.com/o/oauth2/auth?state={state}"

    def exchange_code(self, code, redirect_uri):
        self.exchanged_codes.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return TokenSet(
            access_token="access-from-consent",
            refresh_token=self.exchange_refresh_token,
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )

    def refresh_access_token(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenSet(
            access_token=f"refreshed-{len(self.refresh_calls)}",
            refresh_token=self.refresh_token_returned,
            expires_at=datetime.now(UTC) + self.refresh_expires_in,
        )


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create a new database session for each test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Create a test client with the test database session."""

    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clear_pending_authorizations():
    """OAuth state lives in process memory; start every test without any."""
    pending_authorizations.clear()
    yield
    pending_authorizations.clear()


@pytest.fixture(name="fake_calendar")
def fake_calendar_fixture() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture(name="fake_oauth")
def fake_oauth_fixture() -> FakeOAuthService:
    return FakeOAuthService()


@pytest.fixture(name="family")
def family_fixture(session: Session) -> Family:
    family = Family(name="Smith")
    session.add(family)
    session.commit()
    session.refresh(family)
    return family


@pytest.fixture(name="user")
def user_fixture(session: Session) -> User:
    user = User(email="alex@example.com", name="Alex")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture(name="other_user")
def other_user_fixture(session: Session) -> User:
    user = User(email="sam@example.com", name="Sam")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def _create_credential(session: Session, user: User, **overrides) -> GoogleCalendarCredential:
    fields = {
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "token_expires_at": datetime.now(UTC) + timedelta(hours=1),
        "calendar_id": "family@group.calendar.google.com",
        "calendar_name": "Family",
        "account_email": user.email,
    }
    fields.update(overrides)
    return CredentialStore(session).save(user.id, **fields)


@pytest.fixture(name="credential")
def credential_fixture(session: Session, user: User) -> GoogleCalendarCredential:
    """An active credential with an hour of token lifetime left."""
    return _create_credential(session, user)


def _create_goal(session: Session, family: Family, assignees: list[User], **overrides) -> Goal:
    fields = {
        "title": "Run a half marathon",
        "description": "Train three times a week",
        "due_date": date(2025, 6, 1),
        "status": GoalStatus.IN_PROGRESS,
    }
    fields.update(overrides)
    goal = Goal(family_id=family.id, **fields)
    goal.assignees = list(assignees)
    session.add(goal)
    session.commit()
    session.refresh(goal)
    return goal


@pytest.fixture(name="goal")
def goal_fixture(session: Session, family: Family, user: User) -> Goal:
    return _create_goal(session, family, [user])


@pytest.fixture(name="sync_service")
def sync_service_fixture(session: Session, user: User, credential, fake_calendar):
    """Sync service for ``user`` wired to the fake calendar."""
    return CalendarSyncService(session, user.id, client=fake_calendar)


@pytest.fixture(name="make_credential")
def make_credential_fixture(session: Session):
    """Factory for credentials: ``make_credential(user, **overrides)``."""
    return lambda user, **overrides: _create_credential(session, user, **overrides)


@pytest.fixture(name="make_goal")
def make_goal_fixture(session: Session, family: Family):
    """Factory for goals: ``make_goal(assignees, **overrides)``."""
    return lambda assignees, **overrides: _create_goal(session, family, assignees, **overrides)
