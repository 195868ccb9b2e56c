"""Database initialisation and config loading for the runledger web app."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

_db_initialized = False


def _init_db() -> bool:
    """Configure the DB and ensure all tables exist.

    Resolution order (no config file needed):
      1. DATABASE_URL env var  → PostgreSQL
      2. METADATA_DB env var   → SQLite at that path
      3. Default               → runledger.sqlite3 in cwd
    """
    global _db_initialized
    if not _db_initialized:
        try:
            from runledger.appconfig import get_db_path_from_env
            from runledger.database import get_all_models, migrate_tables
            from runledger.db import configure_db

            configure_db(get_db_path_from_env())
            migrate_tables(get_all_models())

            _db_initialized = True
        except Exception as e:
            logger.error("DB init failed: %s", e)
            return False
    return True


def load_runledger_config() -> dict[str, Any]:
    """Load runledger config: always returns a valid dict.

    Priority: DB rows → JSON file (migrated in on first call) → built-in defaults.
    """
    _init_db()
    from runledger.appconfig import load_config

    return load_config()
