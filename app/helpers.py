"""Shared helper functions for the runledger web app."""

import os
from datetime import UTC, datetime
from typing import Any

import pytz
from db_init import _init_db
from flask import current_app, g

from runledger.session import SessionRegistry

OWNER_HEADER = "X-Owner-Id"
REGISTRY_KEY = "runledger.sessions"
# Comma-separated owner ids allowed to change the shared configuration
ADMIN_OWNERS_ENV = "RUNLEDGER_ADMIN_OWNERS"


def get_current_date_in_timezone(config: dict[str, Any]):
    """Get the current date in the configured timezone."""
    try:
        timezone_str = config.get("home_timezone", "UTC")
        tz = pytz.timezone(timezone_str)
        now = datetime.now(tz)
        return now.date()
    except pytz.UnknownTimeZoneError:
        return datetime.now(pytz.UTC).date()


def parse_date(value: str | None, config: dict[str, Any]):
    """``YYYY-MM-DD`` from a request, or today in the home timezone."""
    if not value:
        return get_current_date_in_timezone(config)
    return datetime.strptime(value, "%Y-%m-%d").date()


def current_owner_id() -> str:
    """Owner id of the request, set by the auth hook in main.py."""
    return g.owner_id


def is_admin_owner(owner_id: str) -> bool:
    admins = {o.strip() for o in os.environ.get(ADMIN_OWNERS_ENV, "").split(",") if o.strip()}
    return owner_id in admins


def get_registry() -> SessionRegistry:
    return current_app.extensions[REGISTRY_KEY]


def error_body(code: str, detail: str) -> dict[str, str]:
    return {"error": code, "detail": detail}


def get_database_info() -> dict[str, Any]:
    """Get basic information about the configured database."""
    if not _init_db():
        return {"error": "Database not available"}

    from runledger.database import get_all_models
    from runledger.db import get_db

    db = get_db()
    db.connect(reuse_if_open=True)
    table_counts = {model._meta.table_name: model.select().count() for model in get_all_models()}
    return {
        "tables": table_counts,
        "total_tables": len(table_counts),
        "checked_at": datetime.now(UTC).isoformat(),
    }
