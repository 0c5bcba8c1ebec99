"""Google Calendar API client for one user's stored credential.

Every call first makes sure the access token is usable, refreshing it through
``GoogleOAuthService`` when it is about to expire. Google API failures are
translated into the ``CalendarError`` hierarchy so callers never deal with
``HttpError`` directly.
"""
import json
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any

from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import BaseModel

from goalsync.calendar.credentials import CredentialStore
from goalsync.calendar.oauth import GoogleOAuthService, TokenExchangeError, TokenSet
from goalsync.core.config import settings
from goalsync.models import GoogleCalendarCredential

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}

ServiceBuilder = Callable[[str], Any]


class CalendarError(Exception):
    """Base class for Google Calendar failures."""


class AuthenticationError(CalendarError):
    """Google rejected the credential; the user has to reconnect."""


class TokenExpiredError(AuthenticationError):
    """The access token is expired and could not be refreshed."""


class CalendarNotFoundError(CalendarError):
    """The calendar does not exist or is no longer shared with the user."""


class EventNotFoundError(CalendarError):
    """The event is gone from Google Calendar."""


class EventConflictError(CalendarError):
    """The event changed remotely since the etag we hold (HTTP 412)."""


class QuotaExceededError(CalendarError):
    """Google rate limited the request; retry later."""


class EventData(BaseModel):
    """Content of an all-day event."""
    summary: str
    description: str | None = None
    event_date: date


class EventResult(BaseModel):
    id: str
    etag: str | None = None
    html_link: str | None = None


class RemoteEvent(BaseModel):
    id: str
    etag: str | None = None
    summary: str | None = None
    description: str | None = None
    start_date: date | None = None
    html_link: str | None = None


class CalendarInfo(BaseModel):
    id: str
    summary: str | None = None
    description: str | None = None
    primary: bool = False
    access_role: str | None = None


def build_calendar_service(access_token: str):
    """Build a Calendar v3 service authorized with a bare access token.

    No refresh token is handed to google-auth, so the library never refreshes
    on its own; token lifecycle stays with ``GoogleCalendarClient``.
    """
    creds = Credentials(token=access_token)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def build_event_body(event: EventData) -> dict:
    """Build an all-day event body with default reminders turned off.

    Google treats the end date of an all-day event as exclusive, so a
    single-day marker ends on the following day.
    """
    return {
        "summary": event.summary,
        "description": event.description,
        "start": {"date": event.event_date.isoformat()},
        "end": {"date": (event.event_date + timedelta(days=1)).isoformat()},
        "reminders": {"useDefault": False},
    }


def _error_reasons(error: HttpError) -> set[str]:
    """Extract the ``reason`` codes from a Google API error body."""
    try:
        payload = json.loads(error.content)
    except (TypeError, ValueError):
        return set()
    if not isinstance(payload, dict):
        return set()
    details = payload.get("error", {})
    if not isinstance(details, dict):
        return set()
    return {item.get("reason") for item in details.get("errors", []) if isinstance(item, dict)}


def _is_rate_limited(error: HttpError) -> bool:
    status = error.resp.status
    return status == 429 or (status == 403 and bool(_error_reasons(error) & RATE_LIMIT_REASONS))


def _to_calendar_info(item: dict) -> CalendarInfo:
    return CalendarInfo(
        id=item["id"],
        summary=item.get("summary"),
        description=item.get("description"),
        primary=item.get("primary", False),
        access_role=item.get("accessRole"),
    )


def _fetch_calendar_list(service, execute=None) -> list[CalendarInfo]:
    execute = execute or (lambda request: request.execute())
    calendars = []
    page_token = None
    while True:
        result = execute(service.calendarList().list(pageToken=page_token))
        calendars.extend(_to_calendar_info(item) for item in result.get("items", []))
        page_token = result.get("nextPageToken")
        if not page_token:
            return calendars


def list_calendars_with_tokens(
    tokens: TokenSet, service_builder: ServiceBuilder = build_calendar_service
) -> list[CalendarInfo]:
    """List calendars using tokens that are not persisted yet.

    Used during the connect flow, between the OAuth callback and the user
    picking a calendar, when no credential row exists.
    """
    if tokens.is_expired():
        raise TokenExpiredError("Pending Google authorization has expired; reconnect")

    try:
        return _fetch_calendar_list(service_builder(tokens.access_token))
    except RefreshError as e:
        raise AuthenticationError(f"Google Calendar authentication failed: {e}") from e
    except HttpError as e:
        if e.resp.status == 401:
            raise AuthenticationError(f"Google Calendar authentication failed: {e}") from e
        if _is_rate_limited(e):
            raise QuotaExceededError(f"Google Calendar API quota exceeded: {e}") from e
        raise CalendarError(f"Failed to list calendars: {e}") from e


class GoogleCalendarClient:
    """Calendar operations on behalf of one credential."""

    def __init__(
        self,
        credential: GoogleCalendarCredential,
        store: CredentialStore,
        oauth: GoogleOAuthService,
        service_builder: ServiceBuilder = build_calendar_service,
        refresh_window: timedelta = timedelta(minutes=settings.token_refresh_window_minutes),
    ):
        if credential is None:
            raise AuthenticationError("User has no Google Calendar credentials")
        self.credential = credential
        self.store = store
        self.oauth = oauth
        self.service_builder = service_builder
        self.refresh_window = refresh_window
        self._service = None
        self._service_token: str | None = None

    def list_calendars(self) -> list[CalendarInfo]:
        service = self._authorized_service()
        try:
            return _fetch_calendar_list(service, self._execute)
        except HttpError as e:
            if e.resp.status == 404:
                raise CalendarNotFoundError(f"Calendar list not found: {e}") from e
            raise self._translate(e) from e

    def create_event(self, calendar_id: str, event: EventData) -> EventResult:
        service = self._authorized_service()
        request = service.events().insert(calendarId=calendar_id, body=build_event_body(event))
        try:
            result = self._execute(request)
        except HttpError as e:
            if e.resp.status == 404:
                raise CalendarNotFoundError(f"Calendar not found: {calendar_id}") from e
            raise self._translate(e) from e
        return self._to_event_result(result)

    def update_event(
        self,
        calendar_id: str,
        event_id: str,
        event: EventData,
        etag: str | None = None,
    ) -> EventResult:
        """Overwrite an event, conditional on ``etag`` when one is given."""
        service = self._authorized_service()
        request = service.events().update(
            calendarId=calendar_id, eventId=event_id, body=build_event_body(event)
        )
        if etag:
            request.headers["If-Match"] = etag
        try:
            result = self._execute(request)
        except HttpError as e:
            if e.resp.status in (404, 410):
                raise EventNotFoundError(f"Event not found: {event_id}") from e
            if e.resp.status == 412:
                raise EventConflictError(f"Event {event_id} was modified remotely") from e
            raise self._translate(e) from e
        return self._to_event_result(result)

    def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event. An event that is already gone counts as deleted."""
        service = self._authorized_service()
        try:
            self._execute(service.events().delete(calendarId=calendar_id, eventId=event_id))
        except HttpError as e:
            if e.resp.status in (404, 410):
                logger.info(f"Event {event_id} already deleted from Google Calendar")
                return True
            raise self._translate(e) from e
        return True

    def get_event(self, calendar_id: str, event_id: str) -> RemoteEvent:
        service = self._authorized_service()
        try:
            result = self._execute(service.events().get(calendarId=calendar_id, eventId=event_id))
        except HttpError as e:
            if e.resp.status in (404, 410):
                raise EventNotFoundError(f"Event not found: {event_id}") from e
            raise self._translate(e) from e

        start = result.get("start", {})
        if start.get("date"):
            start_date = date.fromisoformat(start["date"])
        elif start.get("dateTime"):
            start_date = datetime.fromisoformat(start["dateTime"].replace("Z", "+00:00")).date()
        else:
            start_date = None
        return RemoteEvent(
            id=result["id"],
            etag=result.get("etag"),
            summary=result.get("summary"),
            description=result.get("description"),
            start_date=start_date,
            html_link=result.get("htmlLink"),
        )

    def ensure_valid_token(self) -> None:
        """Refresh the access token if it is close to expiry.

        Raises TokenExpiredError when the refresh is rejected or the token is
        still expired afterwards.
        """
        if self.credential.is_expiring_soon(self.refresh_window):
            self._refresh_token()
        if self.credential.is_expired():
            raise TokenExpiredError("Google Calendar token has expired")

    def _refresh_token(self) -> None:
        try:
            tokens = self.oauth.refresh_access_token(self.credential.refresh_token)
        except TokenExchangeError as e:
            self.store.mark_error(self.credential, f"Token refresh failed: {e}")
            raise TokenExpiredError(f"Failed to refresh token: {e}") from e

        self.store.update_tokens(self.credential, tokens)
        logger.info(
            f"Refreshed Google Calendar token for user {self.credential.user_id}, "
            f"expires {tokens.expires_at.astimezone(UTC).isoformat()}"
        )

    def _authorized_service(self):
        self.ensure_valid_token()
        token = self.credential.access_token
        # Rebuild after a refresh so requests carry the new bearer token
        if self._service is None or self._service_token != token:
            self._service = self.service_builder(token)
            self._service_token = token
        return self._service

    def _execute(self, request):
        # A 401 makes google-auth try to refresh credentials that carry no
        # refresh token, which surfaces as RefreshError instead of HttpError.
        try:
            return request.execute()
        except RefreshError as e:
            raise self._authentication_failed(e) from e

    def _authentication_failed(self, error: Exception) -> AuthenticationError:
        self.store.mark_error(self.credential, f"Authentication failed: {error}")
        return AuthenticationError(f"Google Calendar authentication failed: {error}")

    def _translate(self, error: HttpError) -> CalendarError:
        if error.resp.status == 401:
            return self._authentication_failed(error)
        if _is_rate_limited(error):
            return QuotaExceededError(f"Google Calendar API quota exceeded: {error}")
        return CalendarError(f"Google Calendar API error (HTTP {error.resp.status}): {error}")

    @staticmethod
    def _to_event_result(result: dict) -> EventResult:
        return EventResult(
            id=result["id"],
            etag=result.get("etag"),
            html_link=result.get("htmlLink"),
        )
