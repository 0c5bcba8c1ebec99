"""Database configuration and session management.

SQLite is the default backend. When the configured URL points at SQLite the
engine is tuned the same way for every connection:

    - **WAL (Write-Ahead Logging)**: Allows concurrent readers while writing.
      Background sync jobs write mappings and credential updates while
      request handlers read sync status.

    - **Foreign Keys**: Disabled by default in SQLite. Enabled so a mapping
      can never point at a user that no longer exists.

    - **check_same_thread=False**: Sessions are opened in scheduler worker
      threads and FastAPI's threadpool, not only the thread that created
      the connection.
"""

from sqlalchemy import event as sa_event
from sqlmodel import Session, SQLModel, create_engine

from goalsync.core.config import settings

is_sqlite = settings.database_url.startswith("sqlite")

connect_args = {"check_same_thread": False} if is_sqlite else {}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,  # Log SQL statements when DEBUG=true
)


if is_sqlite:

    @sa_event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Configure SQLite pragmas on each new connection.

        These settings are connection-level, not database-level, so they must
        be set each time a new connection is established from the pool.
        """
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_and_tables():
    """Create all database tables."""
    # Import models so their tables are registered on the metadata
    import goalsync.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for getting database session."""
    with Session(engine) as session:
        yield session
