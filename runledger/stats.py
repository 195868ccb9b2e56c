"""Database query helpers for per-owner run statistics.

These functions are free of web/Flask dependencies so they can be used by both
the CLI commands and the web application.  Callers are responsible for
ensuring the database is initialised before calling these.
"""

from __future__ import annotations

from typing import Any

from peewee import fn

from .run import Run


def get_lifetime_totals(owner_id: str) -> dict[str, Any]:
    """Return run count and summed distance, duration and gems for *owner_id*."""
    row = (
        Run.select(
            fn.COUNT(Run.id).alias("runs"),
            fn.COALESCE(fn.SUM(Run.distance_meters), 0).alias("distance_meters"),
            fn.COALESCE(fn.SUM(Run.duration_seconds), 0).alias("duration_seconds"),
            fn.COALESCE(fn.SUM(Run.gems_earned), 0).alias("gems"),
            fn.COALESCE(fn.MAX(Run.distance_meters), 0).alias("longest_meters"),
        )
        .where(Run.owner_id == owner_id)
        .dicts()
        .get()
    )
    return {
        "runs": int(row["runs"]),
        "distance_meters": float(row["distance_meters"]),
        "duration_seconds": float(row["duration_seconds"]),
        "gems": int(row["gems"]),
        "longest_meters": float(row["longest_meters"]),
        "flagged": Run.select().where((Run.owner_id == owner_id) & (Run.is_flagged == True)).count(),  # noqa: E712
    }


def get_recent_runs(owner_id: str, limit: int = 10) -> list[Run]:
    """Most recent runs first."""
    return list(
        Run.select()
        .where(Run.owner_id == owner_id)
        .order_by(Run.date.desc(), Run.id.desc())
        .limit(limit)
    )
