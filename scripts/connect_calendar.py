#!/usr/bin/env python3
"""
Connect a Google Calendar for a user from the terminal.

Useful for development and support, where running the browser-based connect
flow through the frontend is inconvenient.

Usage:
    python scripts/connect_calendar.py --user-id=1
    python scripts/connect_calendar.py --user-id=1 --calendar-id=family@group.calendar.google.com --sync

Requirements:
    - GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set in .env
    - The redirect URI (GOOGLE_REDIRECT_URI) must be registered for the client
"""
import argparse
import os
import secrets
import sys
from urllib.parse import parse_qs, urlparse

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import Session

from goalsync.calendar.client import CalendarError, list_calendars_with_tokens
from goalsync.calendar.credentials import CredentialStore
from goalsync.calendar.jobs import full_sync_job
from goalsync.calendar.oauth import ConfigurationError, GoogleOAuthService, TokenExchangeError
from goalsync.core.config import settings
from goalsync.core.database import create_db_and_tables, engine
from goalsync.models import SyncStatus, User


def main():
    parser = argparse.ArgumentParser(description="Connect a Google Calendar for a user")
    parser.add_argument("--user-id", type=int, required=True, help="User to connect")
    parser.add_argument("--calendar-id", help="Calendar to sync into (default: primary)")
    parser.add_argument("--sync", action="store_true", help="Run a full sync after connecting")
    args = parser.parse_args()

    create_db_and_tables()
    with Session(engine) as session:
        if session.get(User, args.user_id) is None:
            print(f"Error: user {args.user_id} does not exist.")
            sys.exit(1)

    oauth = GoogleOAuthService.from_settings()
    state = secrets.token_urlsafe(32)

    try:
        auth_url = oauth.authorization_url(state=state, redirect_uri=settings.google_redirect_uri)
    except ConfigurationError as e:
        print(f"Error: {e}")
        print()
        print("Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET in your .env file.")
        sys.exit(1)

    print("=" * 60)
    print("Google Calendar Connect")
    print("=" * 60)
    print()
    print("Open this URL in a browser (on any machine):")
    print()
    print(auth_url)
    print()
    print("After authorizing, copy the FULL redirect URL and paste it back here.")
    print()

    redirect_response = input("Paste the full redirect URL here: ").strip()
    query = parse_qs(urlparse(redirect_response).query)

    if query.get("state", [None])[0] != state:
        print("Error: state mismatch, the URL does not belong to this session.")
        sys.exit(1)
    if "code" not in query:
        print(f"Error: authorization failed: {query.get('error', ['unknown'])[0]}")
        sys.exit(1)

    try:
        tokens = oauth.exchange_code(code=query["code"][0], redirect_uri=settings.google_redirect_uri)
    except TokenExchangeError as e:
        print(f"Error: token exchange failed: {e}")
        sys.exit(1)

    if not tokens.refresh_token:
        print("Error: Google did not return a refresh token. Revoke access and retry.")
        sys.exit(1)

    try:
        calendars = list_calendars_with_tokens(tokens)
    except CalendarError as e:
        print(f"Error: could not list calendars: {e}")
        sys.exit(1)

    if args.calendar_id:
        chosen = next((c for c in calendars if c.id == args.calendar_id), None)
    else:
        chosen = next((c for c in calendars if c.primary), None)
    if chosen is None:
        print("Error: calendar not found. Available calendars:")
        for calendar in calendars:
            print(f"  {calendar.id}  {calendar.summary or ''}")
        sys.exit(1)

    with Session(engine) as session:
        CredentialStore(session).save(
            args.user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            calendar_id=chosen.id,
            calendar_name=chosen.summary,
            sync_status=SyncStatus.ACTIVE,
            last_error=None,
        )

    print()
    print("=" * 60)
    print(f"SUCCESS! User {args.user_id} now syncs to: {chosen.summary or chosen.id}")
    print("=" * 60)

    if args.sync:
        outcome = full_sync_job(args.user_id)
        if outcome is None:
            print("Initial sync failed; see the application log for details.")
            sys.exit(1)
        print(f"Initial sync: {outcome.summary()}")


if __name__ == "__main__":
    main()
