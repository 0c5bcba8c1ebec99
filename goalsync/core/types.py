"""Custom SQLAlchemy column types.

``EncryptedString`` keeps OAuth secrets encrypted at rest with Fernet
(AES-128-CBC + HMAC). Values are encrypted on the way into the database and
decrypted when loaded, so model code only ever sees plaintext.

``UTCDateTime`` stores timestamps as naive UTC and hands them back as
timezone-aware values. SQLite has no timezone support and would otherwise
return naive datetimes that cannot be compared with ``datetime.now(UTC)``.
"""

import base64
import hashlib
from datetime import UTC, datetime
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.types import DateTime, String, TypeDecorator

from goalsync.core.config import settings


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """Return the Fernet instance for the configured key.

    A dedicated ``TOKEN_ENCRYPTION_KEY`` is preferred. Without one, a key is
    derived from ``SECRET_KEY`` so development setups work out of the box.
    """
    key = settings.token_encryption_key
    if not key:
        digest = hashlib.sha256(settings.secret_key.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest).decode("ascii")
    return Fernet(key.encode("ascii"))


class EncryptedString(TypeDecorator):
    """String column transparently encrypted with Fernet."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        return get_fernet().encrypt(value.encode("utf-8")).decode("ascii")

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        try:
            return get_fernet().decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise ValueError(
                "Stored secret could not be decrypted; was TOKEN_ENCRYPTION_KEY rotated?"
            ) from e


class UTCDateTime(TypeDecorator):
    """DateTime column that always round-trips as an aware UTC datetime."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
