import os
from datetime import UTC, datetime, timedelta

import pytest

from runledger.database import get_all_models, migrate_tables
from runledger.db import configure_db, get_db


@pytest.fixture(autouse=True)
def reset_owner_context():
    """Reset the owner_id ContextVar before every test."""
    from runledger.user_context import set_owner_id

    set_owner_id("-")


@pytest.fixture(scope="session", autouse=True)
def test_db():
    test_db_path = "test.sqlite3"
    configure_db(test_db_path)
    db = get_db()
    # Rebind all models to the test DB
    for model in get_all_models():
        model._meta.set_database(db)
    db.connect()
    migrate_tables(get_all_models())
    yield
    db.close()
    if os.path.exists(test_db_path):
        os.remove(test_db_path)


@pytest.fixture(autouse=True)
def clean_tables(monkeypatch):
    """Empty every table and ignore any config file on disk."""
    import runledger.appconfig as rcfg

    monkeypatch.setattr(rcfg, "_FILE_PATHS", [])
    for model in get_all_models():
        model.delete().execute()
    yield


class FakeClock:
    """Deterministic clock for the session machine."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 6, 1, 7, 0, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
