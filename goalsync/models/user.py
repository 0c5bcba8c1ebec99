"""User and family models.

Users and families are owned by the wider goal-tracking product. This service
only reads them: the user is the owner of a calendar credential, and the
family name is shown in synced event descriptions.
"""

from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """An account that can connect a Google Calendar.

    Attributes:
        id: Primary key.
        email: Login email address.
        name: Display name.
    """
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str | None = None


class Family(SQLModel, table=True):
    """A family grouping goals and reviews.

    Attributes:
        id: Primary key.
        name: Family name shown in event descriptions.
        timezone: IANA timezone name used by the product for period math.
    """
    id: int | None = Field(default=None, primary_key=True)
    name: str
    timezone: str = Field(default="UTC")
