"""Google Calendar connection routes.

The connect flow spans several requests:

  1. ``GET /auth_url`` creates a one-time state token bound to the user and
     returns the Google consent URL.
  2. Google redirects the browser to ``GET /callback`` with the code and
     state. The code is exchanged for tokens, which are parked with the
     pending state; the browser is sent to the frontend calendar picker.
  3. ``GET /calendars?state=`` lists the user's calendars with the parked
     tokens.
  4. ``POST /connect`` stores the credential for the chosen calendar and
     starts an initial full sync.
"""
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from sqlmodel import Session

from goalsync.calendar.client import (
    AuthenticationError,
    CalendarError,
    QuotaExceededError,
    list_calendars_with_tokens,
)
from goalsync.calendar.credentials import CredentialStore, InvalidCredentialError
from goalsync.calendar.jobs import full_sync_job
from goalsync.calendar.oauth import (
    ConfigurationError,
    GoogleOAuthService,
    TokenExchangeError,
    TokenSet,
)
from goalsync.core.config import settings
from goalsync.core.database import get_session
from goalsync.models import GoogleCalendarCredential, SyncStatus, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users/me/google_calendar", tags=["google_calendar"])


@dataclass
class PendingAuthorization:
    user_id: int
    created_at: float = field(default_factory=time.monotonic)
    tokens: TokenSet | None = None


class PendingAuthorizationStore:
    """In-memory OAuth state tokens awaiting completion, with a TTL."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._pending: dict[str, PendingAuthorization] = {}
        self._lock = threading.Lock()

    def start(self, user_id: int) -> str:
        state = secrets.token_urlsafe(32)
        with self._lock:
            self._evict_expired()
            self._pending[state] = PendingAuthorization(user_id=user_id)
        return state

    def attach_tokens(self, state: str, tokens: TokenSet) -> PendingAuthorization | None:
        with self._lock:
            self._evict_expired()
            pending = self._pending.get(state)
            if pending is not None:
                pending.tokens = tokens
            return pending

    def get(self, state: str, user_id: int) -> PendingAuthorization | None:
        """Pending authorization for ``state`` if it belongs to ``user_id``."""
        with self._lock:
            self._evict_expired()
            pending = self._pending.get(state)
        if pending is None or pending.user_id != user_id:
            return None
        return pending

    def exists(self, state: str) -> bool:
        with self._lock:
            self._evict_expired()
            return state in self._pending

    def consume(self, state: str) -> None:
        with self._lock:
            self._pending.pop(state, None)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def _evict_expired(self) -> None:
        cutoff = time.monotonic() - self.ttl_seconds
        expired = [state for state, p in self._pending.items() if p.created_at < cutoff]
        for state in expired:
            del self._pending[state]


pending_authorizations = PendingAuthorizationStore(settings.oauth_state_ttl_seconds)


class ConnectRequest(BaseModel):
    state: str
    calendar_id: str = Field(min_length=1)
    calendar_name: str | None = None
    account_email: str | None = None


def get_current_user_id(
    x_user_id: int = Header(...),
    session: Session = Depends(get_session),
) -> int:
    """Resolve the acting user; authentication happens upstream."""
    if session.get(User, x_user_id) is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return x_user_id


def get_oauth_service() -> GoogleOAuthService:
    return GoogleOAuthService.from_settings()


def get_calendar_lister():
    return list_calendars_with_tokens


def _status_payload(credential: GoogleCalendarCredential) -> dict:
    return {
        "connected": True,
        "calendar_id": credential.calendar_id,
        "calendar_name": credential.calendar_name,
        "account_email": credential.account_email,
        "sync_status": SyncStatus(credential.sync_status).value,
        "last_sync_at": credential.last_sync_at.isoformat() if credential.last_sync_at else None,
        "last_error": credential.last_error,
    }


def _require_credential(session: Session, user_id: int) -> GoogleCalendarCredential:
    credential = CredentialStore(session).get(user_id)
    if credential is None:
        raise HTTPException(status_code=404, detail="No Google Calendar connection found")
    return credential


def _frontend_redirect(path: str, **params) -> RedirectResponse:
    url = f"{settings.frontend_url}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


@router.get("")
async def show(
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    """Current connection status for the user."""
    credential = CredentialStore(session).get(user_id)
    if credential is None:
        return {"connected": False}
    return _status_payload(credential)


@router.get("/auth_url")
async def auth_url(
    user_id: int = Depends(get_current_user_id),
    oauth: GoogleOAuthService = Depends(get_oauth_service),
):
    """Start the connect flow and return the Google consent URL."""
    state = pending_authorizations.start(user_id)
    try:
        url = oauth.authorization_url(state=state, redirect_uri=settings.google_redirect_uri)
    except ConfigurationError as e:
        pending_authorizations.consume(state)
        raise HTTPException(status_code=503, detail=str(e))
    return {"auth_url": url, "state": state}


@router.get("/callback")
def callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    oauth: GoogleOAuthService = Depends(get_oauth_service),
):
    """OAuth redirect target. Exchanges the code and hands off to the frontend."""
    if error:
        return _frontend_redirect("/settings/calendar", error=error)
    if not code or not state or not pending_authorizations.exists(state):
        return _frontend_redirect("/settings/calendar", error="Invalid OAuth state parameter")

    try:
        tokens = oauth.exchange_code(code=code, redirect_uri=settings.google_redirect_uri)
    except (TokenExchangeError, ConfigurationError) as e:
        pending_authorizations.consume(state)
        return _frontend_redirect("/settings/calendar", error=str(e))

    if pending_authorizations.attach_tokens(state, tokens) is None:
        return _frontend_redirect("/settings/calendar", error="Invalid OAuth state parameter")

    return _frontend_redirect("/settings/calendar/select", state=state)


@router.get("/calendars")
def calendars(
    state: str = Query(...),
    user_id: int = Depends(get_current_user_id),
    lister=Depends(get_calendar_lister),
):
    """Calendars the user can pick from, using the pending authorization."""
    pending = pending_authorizations.get(state, user_id)
    if pending is None or pending.tokens is None:
        raise HTTPException(status_code=400, detail="No pending OAuth session")

    try:
        items = lister(pending.tokens)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except QuotaExceededError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except CalendarError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {"calendars": [item.model_dump() for item in items]}


@router.post("/connect", status_code=201)
async def connect(
    body: ConnectRequest,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    """Store the credential for the chosen calendar and start the first sync."""
    pending = pending_authorizations.get(body.state, user_id)
    if pending is None or pending.tokens is None:
        raise HTTPException(status_code=400, detail="No pending OAuth session")
    if not pending.tokens.refresh_token:
        raise HTTPException(
            status_code=400, detail="Google did not return a refresh token; please reconnect"
        )

    try:
        credential = CredentialStore(session).save(
            user_id,
            access_token=pending.tokens.access_token,
            refresh_token=pending.tokens.refresh_token,
            token_expires_at=pending.tokens.expires_at,
            calendar_id=body.calendar_id,
            calendar_name=body.calendar_name,
            account_email=body.account_email,
            sync_status=SyncStatus.ACTIVE,
            last_error=None,
        )
    except InvalidCredentialError as e:
        raise HTTPException(status_code=422, detail=str(e))

    pending_authorizations.consume(body.state)
    background_tasks.add_task(full_sync_job, user_id)
    logger.info(f"User {user_id} connected calendar {credential.calendar_id}")
    return _status_payload(credential)


@router.delete("")
async def disconnect(
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    """Remove the credential and all of the user's mappings."""
    credential = _require_credential(session, user_id)
    removed = CredentialStore(session).delete(credential)
    return {"disconnected": True, "mappings_removed": removed}


@router.post("/sync")
async def sync(
    background_tasks: BackgroundTasks,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    """Queue a full sync."""
    credential = CredentialStore(session).get(user_id)
    if credential is None or not credential.is_active:
        raise HTTPException(
            status_code=400, detail="Google Calendar is not connected or is not active"
        )
    background_tasks.add_task(full_sync_job, user_id)
    return {"message": "Sync started", "sync_status": "syncing"}


@router.post("/pause")
async def pause(
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    credential = CredentialStore(session).pause(_require_credential(session, user_id))
    return {"sync_status": credential.sync_status.value}


@router.post("/resume")
async def resume(
    background_tasks: BackgroundTasks,
    user_id: int = Depends(get_current_user_id),
    session: Session = Depends(get_session),
):
    """Reactivate sync (also after an error) and catch up with a full sync."""
    credential = CredentialStore(session).resume(_require_credential(session, user_id))
    background_tasks.add_task(full_sync_job, user_id)
    return {"sync_status": credential.sync_status.value}
