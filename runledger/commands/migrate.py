"""Database migration/bootstrap command.

Ensures all tables exist for the configured backend (SQLite or PostgreSQL).
Idempotent and safe to run on every container start.  On Postgres, retries the
connection for up to ~60 s in case the database is still starting.
"""

import os
import time

from runledger.core import Ledger

_MAX_RETRIES = 12
_RETRY_DELAY = 5  # seconds


def run(retry_delay: float = _RETRY_DELAY):
    """Bootstrap / migrate the database schema."""
    database_url = os.environ.get("DATABASE_URL", "")
    backend = "PostgreSQL" if database_url else "SQLite"
    print(f"🗄️  Running database migrations ({backend})...")

    for attempt in range(1, _MAX_RETRIES + 1):
        try:
            with Ledger():
                print("✅ Migrations complete.")
                return
        except Exception as e:
            if attempt < _MAX_RETRIES and database_url:
                print(f"⏳ Database not ready (attempt {attempt}/{_MAX_RETRIES}): {e}")
                time.sleep(retry_delay)
            else:
                print(f"❌ Migration failed: {e}")
                raise
