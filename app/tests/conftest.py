from datetime import UTC, datetime, timedelta

import pytest

OWNER = "alice"


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 6, 1, 7, 0, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def temp_database(monkeypatch, tmp_path):
    """Point the app at a fresh SQLite file.

    Also patches _FILE_PATHS to [] so a real runledger_config.json on disk
    can't interfere with the test DB via the file-sync logic.
    """
    import db_init as db_init_module

    import runledger.appconfig as rcfg
    import runledger.db as rdb

    monkeypatch.setattr(rcfg, "_FILE_PATHS", [])
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("METADATA_DB", str(tmp_path / "web.sqlite3"))

    rdb.reset_db()
    db_init_module._db_initialized = False
    assert db_init_module._init_db()
    yield
    rdb.reset_db()
    db_init_module._db_initialized = False


@pytest.fixture
def web_clock():
    return FakeClock()


@pytest.fixture
def client(temp_database, web_clock):
    """Test client with a fresh session registry driven by a fake clock."""
    from db_init import load_runledger_config
    from helpers import REGISTRY_KEY
    from main import app

    from runledger.session import RunSessionMachine, SessionRegistry

    def factory(owner_id):
        return RunSessionMachine.from_config(owner_id, load_runledger_config(), clock=web_clock, run_ticker=False)

    app.config["TESTING"] = True
    previous = app.extensions[REGISTRY_KEY]
    app.extensions[REGISTRY_KEY] = SessionRegistry(factory)
    with app.test_client() as c:
        yield c
    app.extensions[REGISTRY_KEY] = previous


@pytest.fixture
def headers():
    return {"X-Owner-Id": OWNER}
