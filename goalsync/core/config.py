"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Goal Calendar Sync"
    debug: bool = False
    secret_key: str = "change-me-in-production"

    # Server
    host: str = "0.0.0.0"  # Bind to all interfaces for external access
    port: int = 8000
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all
    frontend_url: str = "http://localhost:5173"

    # Database
    database_url: str = "sqlite:///./goalsync.db"

    # Google OAuth client (registered in Google Cloud Console)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/users/me/google_calendar/callback"

    # Fernet key for tokens at rest; derived from secret_key when empty
    token_encryption_key: str = ""

    # Sync settings
    token_refresh_window_minutes: int = 5
    sync_interval_minutes: int = 60
    oauth_state_ttl_seconds: int = 600
    http_timeout_seconds: float = 15.0


settings = Settings()
