"""Tests for the credential store."""

from datetime import UTC, date, datetime, timedelta

import pytest
from sqlmodel import Session, select

from goalsync.calendar.credentials import CredentialStore, InvalidCredentialError
from goalsync.calendar.oauth import TokenSet
from goalsync.models import CalendarSyncMapping, SyncableKind, SyncStatus


def _token_fields(**overrides):
    fields = {
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "token_expires_at": datetime.now(UTC) + timedelta(hours=1),
        "calendar_id": "primary",
    }
    fields.update(overrides)
    return fields


class TestSave:
    """Tests for creating and updating credentials."""

    def test_create(self, session: Session, user):
        credential = CredentialStore(session).save(user.id, **_token_fields())

        assert credential.user_id == user.id
        assert credential.sync_status == SyncStatus.ACTIVE
        assert credential.is_active
        assert CredentialStore(session).get(user.id).id == credential.id

    @pytest.mark.parametrize(
        "missing", ["access_token", "refresh_token", "calendar_id", "token_expires_at"]
    )
    def test_create_requires_fields(self, session: Session, user, missing):
        fields = _token_fields()
        del fields[missing]

        with pytest.raises(InvalidCredentialError, match=missing):
            CredentialStore(session).save(user.id, **fields)

        assert CredentialStore(session).get(user.id) is None

    def test_create_rejects_empty_refresh_token(self, session: Session, user):
        with pytest.raises(InvalidCredentialError):
            CredentialStore(session).save(user.id, **_token_fields(refresh_token=""))

    def test_second_save_updates_in_place(self, session: Session, user, credential):
        updated = CredentialStore(session).save(user.id, calendar_id="other@group.calendar.google.com")

        assert updated.id == credential.id
        assert updated.calendar_id == "other@group.calendar.google.com"
        assert updated.refresh_token == "refresh-token"

    def test_update_cannot_clear_required_field(self, session: Session, user, credential):
        with pytest.raises(InvalidCredentialError):
            CredentialStore(session).save(user.id, refresh_token=None)

    def test_unknown_field(self, session: Session, user):
        with pytest.raises(TypeError):
            CredentialStore(session).save(user.id, colour="blue", **_token_fields())

    def test_get_missing(self, session: Session, user):
        assert CredentialStore(session).get(user.id) is None


class TestStatusChanges:
    """Tests for token and status updates."""

    def test_update_tokens_keeps_refresh_token(self, session: Session, credential):
        expires_at = datetime.now(UTC) + timedelta(hours=1)
        CredentialStore(session).update_tokens(
            credential, TokenSet(access_token="new-access", expires_at=expires_at)
        )

        assert credential.access_token == "new-access"
        assert credential.refresh_token == "refresh-token"
        assert abs(credential.token_expires_at - expires_at) < timedelta(seconds=1)

    def test_update_tokens_with_rotated_refresh_token(self, session: Session, credential):
        CredentialStore(session).update_tokens(
            credential,
            TokenSet(
                access_token="new-access",
                refresh_token="new-refresh",
                expires_at=datetime.now(UTC) + timedelta(hours=1),
            ),
        )

        assert credential.refresh_token == "new-refresh"

    def test_mark_error_then_synced(self, session: Session, credential):
        store = CredentialStore(session)

        store.mark_error(credential, "Authentication failed")
        assert credential.sync_status == SyncStatus.ERROR
        assert credential.last_error == "Authentication failed"
        assert not credential.is_active

        store.mark_synced(credential)
        assert credential.sync_status == SyncStatus.ACTIVE
        assert credential.last_error is None
        assert credential.last_sync_at is not None

    def test_pause_and_resume(self, session: Session, credential):
        store = CredentialStore(session)

        store.pause(credential)
        assert credential.sync_status == SyncStatus.PAUSED

        store.mark_error(credential, "boom")
        store.resume(credential)
        assert credential.sync_status == SyncStatus.ACTIVE
        assert credential.last_error is None


class TestQueries:
    """Tests for credential selection queries."""

    def test_active_and_valid(self, session: Session, user, other_user, make_credential):
        valid = make_credential(user)
        make_credential(other_user, token_expires_at=datetime.now(UTC) - timedelta(minutes=1))

        assert [c.id for c in CredentialStore(session).active_and_valid()] == [valid.id]

    def test_active_and_valid_skips_paused_and_errored(
        self, session: Session, user, other_user, make_credential
    ):
        store = CredentialStore(session)
        store.pause(make_credential(user))
        store.mark_error(make_credential(other_user), "revoked")

        assert store.active_and_valid() == []

    def test_needing_refresh(self, session: Session, user, other_user, make_credential):
        soon = make_credential(user, token_expires_at=datetime.now(UTC) + timedelta(minutes=3))
        make_credential(other_user, token_expires_at=datetime.now(UTC) + timedelta(minutes=30))

        needing = CredentialStore(session).needing_refresh(timedelta(minutes=5))

        assert [c.id for c in needing] == [soon.id]


class TestDelete:
    def test_delete_removes_mappings(self, session: Session, user, other_user, credential):
        for user_id in (user.id, other_user.id):
            session.add(
                CalendarSyncMapping(
                    user_id=user_id,
                    syncable_type=SyncableKind.GOAL,
                    syncable_id=1,
                    google_event_id="evt-1",
                    google_calendar_id="primary",
                )
            )
        session.add(
            CalendarSyncMapping(
                user_id=user.id,
                syncable_type=SyncableKind.WEEKLY_REVIEW,
                syncable_id=1,
                google_event_id="evt-2",
                google_calendar_id="primary",
                last_synced_at=datetime.combine(date(2025, 1, 1), datetime.min.time(), UTC),
            )
        )
        session.commit()

        removed = CredentialStore(session).delete(credential)

        assert removed == 2
        assert CredentialStore(session).get(user.id) is None
        remaining = session.exec(select(CalendarSyncMapping)).all()
        assert [m.user_id for m in remaining] == [other_user.id]
