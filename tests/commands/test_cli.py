import sys

import pytest

from runledger.__main__ import main
from runledger.commands import migrate


def test_migrate_sqlite(monkeypatch, capsys):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    migrate.run()
    assert "Migrations complete" in capsys.readouterr().out


def test_help(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["runledger", "help"])
    main()
    out = capsys.readouterr().out
    assert "replay FILE" in out
    assert "migrate" in out


def test_owner_is_required(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["runledger", "status"])
    with pytest.raises(SystemExit):
        main()


def test_achievements_dispatch(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["runledger", "achievements", "--owner", "alice"])
    main()
    assert "0 of 11 unlocked" in capsys.readouterr().out
