"""Google OAuth token lifecycle: consent URL, code exchange and refresh.

The service is stateless. It talks to Google's authorization server and
returns a ``TokenSet``; persisting the tokens is the caller's job (see
``goalsync.calendar.credentials.CredentialStore``).
"""
import logging
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict

from goalsync.core.config import Settings, settings

logger = logging.getLogger(__name__)

AUTHORIZATION_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

# Event read/write on any calendar, plus read-only calendar list for the
# calendar picker during connect.
SCOPES = (
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.calendarlist.readonly",
)

# Google omits expires_in only in unusual responses; assume the standard hour.
DEFAULT_EXPIRES_IN = 3600


class OAuthError(Exception):
    """Base class for OAuth failures."""


class ConfigurationError(OAuthError):
    """Client id or secret is missing from the deployment configuration."""


class TokenExchangeError(OAuthError):
    """Google rejected an authorization code or refresh token."""


class OAuthConfig(BaseModel):
    """OAuth client registration, built once at startup."""
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    scopes: tuple[str, ...] = SCOPES

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "OAuthConfig":
        return cls(
            client_id=source.google_client_id,
            client_secret=source.google_client_secret,
        )

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


class TokenSet(BaseModel):
    """Tokens returned by the token endpoint.

    ``refresh_token`` is None when Google did not send one, which is normal
    for refresh responses; callers keep the previous refresh token.
    """
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime
    token_type: str | None = None
    scope: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at < (now or datetime.now(UTC))


class GoogleOAuthService:
    """Client for Google's OAuth 2.0 authorization server."""

    def __init__(
        self,
        config: OAuthConfig,
        http_client: httpx.Client | None = None,
        timeout: float = settings.http_timeout_seconds,
    ):
        self.config = config
        self._http_client = http_client
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "GoogleOAuthService":
        return cls(OAuthConfig.from_settings())

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the consent URL the user is redirected to.

        ``access_type=offline`` and ``prompt=consent`` make Google return a
        refresh token on every consent, not just the first one.
        """
        self._validate_configuration()

        params = {
            "client_id": self.config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self.config.scope,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{AUTHORIZATION_URI}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> TokenSet:
        """Exchange an authorization code from the consent callback for tokens."""
        self._validate_configuration()
        return self._request_tokens({
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        })

    def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """Mint a new access token from a refresh token."""
        self._validate_configuration()
        return self._request_tokens({
            "refresh_token": refresh_token,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "grant_type": "refresh_token",
        })

    def _validate_configuration(self) -> None:
        if not self.config.client_id:
            raise ConfigurationError("Google OAuth client_id is not configured")
        if not self.config.client_secret:
            raise ConfigurationError("Google OAuth client_secret is not configured")

    def _post(self, payload: dict[str, str]) -> httpx.Response:
        if self._http_client is not None:
            return self._http_client.post(TOKEN_URI, data=payload)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(TOKEN_URI, data=payload)

    def _request_tokens(self, payload: dict[str, str]) -> TokenSet:
        grant_type = payload["grant_type"]
        try:
            response = self._post(payload)
        except httpx.TransportError as e:
            raise TokenExchangeError(f"Network error during token request: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            message = (
                data.get("error_description")
                or data.get("error")
                or "Token exchange failed"
            )
            # Status and provider message only; the body may echo secrets
            logger.warning(
                f"Token request ({grant_type}) failed with HTTP {response.status_code}: {message}"
            )
            raise TokenExchangeError(message)

        if not data.get("access_token"):
            raise TokenExchangeError("Token response did not include an access token")

        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            token_type=data.get("token_type"),
            scope=data.get("scope"),
        )
