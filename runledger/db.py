import os
from datetime import UTC, datetime

from peewee import Proxy, SqliteDatabase

# Use a Proxy object that can be configured later
db = Proxy()

_configured = False


def configure_db(db_path: str = "runledger.sqlite3"):
    """Configure the database backend.

    Resolution order:
    1. DATABASE_URL environment variable → PostgreSQL (production)
    2. db_path argument → SQLite (dev / default)
    """
    global _configured
    if not _configured:
        database_url = os.environ.get("DATABASE_URL")
        if database_url:
            # psycopg2-binary must be installed for postgres:// URLs
            # (see the [production] extra).
            from playhouse.db_url import connect

            database = connect(database_url)
        else:
            database = SqliteDatabase(
                db_path,
                pragmas={
                    "journal_mode": "wal",  # safe concurrent readers
                    "foreign_keys": 1,
                    "busy_timeout": 5000,  # concurrent finish requests wait instead of failing
                },
            )
        db.initialize(database)
        _configured = True
    return db


def get_db():
    """Get the configured database instance."""
    if not _configured:
        raise RuntimeError("Database not configured. Call configure_db() first.")
    return db


def reset_db() -> None:
    """Close the current backend and allow ``configure_db()`` to pick a new one."""
    global _configured
    if _configured and db.obj is not None and not db.is_closed():
        db.close()
    _configured = False


def to_db_datetime(value: datetime) -> datetime:
    """Naive UTC datetime for DateTimeField columns (peewee reads them back naive)."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value
