"""Application configuration model and helpers.

The DB (``appconfig`` table) is always the source of truth.

On every ``load_config()`` call the file is checked:
  - If a JSON config file exists *and* its contents differ from the DB,
    the DB is updated to match the file.
  - If the DB is empty and no file exists, built-in defaults are seeded.

Every tunable threshold of the tracking filter, anti-cheat validator and the
three ledgers lives here, so changing one never requires a code change.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

from peewee import CharField, Model, TextField

from .db import db

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_CONFIG: dict[str, Any] = {
    "home_timezone": "UTC",
    "debug": False,
    # Unit used for gem rewards: one gem per whole unit ("mi" or "km")
    "distance_unit": "mi",
    "tracking": {
        "max_accuracy_m": 25.0,
        "min_step_m": 1.0,
        "max_step_m": 100.0,
        "route_min_spacing_m": 5.0,
        "route_min_speed_mps": 0.5,
        "route_max_speed_mps": 10.0,
        "tick_seconds": 1.0,
        "calories_per_minute": 10.0,
    },
    "anticheat": {
        "max_distance_km": 160.0,
        "max_duration_s": 86400,
        "min_speed_kph": 0.8,
        "pace_check_min_distance_km": 1.6,
        "flag_speed_kph": 43.0,
    },
    "daily_goal": {
        "minutes_goal": 15,
    },
    "streak": {
        # Pending product confirmation: spend freeze tokens to bridge missed days
        "freeze_bridges_gap": False,
        "max_bridged_days": 1,
        "initial_freeze_tokens": 3,
    },
}

# Candidate JSON config file locations (searched in order)
_FILE_PATHS: list[Path] = [
    Path("runledger_config.json"),
    Path("../runledger_config.json"),
]


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class AppConfig(Model):
    """Key-value store for application configuration.

    Each top-level key from the config dict (e.g. ``home_timezone``,
    ``streak``) is stored as one row with the value JSON-encoded.
    """

    key = CharField(max_length=128, unique=True)
    value = TextField()  # JSON-encoded value

    class Meta:
        database = db
        table_name = "appconfig"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_from_db() -> dict[str, Any] | None:
    """Return config dict from DB rows, or ``None`` if the table is empty."""
    rows = list(AppConfig.select())
    if not rows:
        return None
    return {r.key: json.loads(r.value) for r in rows}


def _load_from_file() -> dict[str, Any] | None:
    """Try each candidate path; return parsed JSON or ``None``."""
    for path in _FILE_PATHS:
        if path.exists():
            try:
                with open(path) as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("ignoring unreadable config file %s: %s", path, e)
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config() -> dict[str, Any]:
    """Return the current configuration, always using the DB as source of truth.

    On every call:
      1. If a JSON config file exists and its top-level keys differ from what
         is stored in the DB, the DB is updated to match the file.
      2. If the DB is empty (first boot, no file), built-in defaults are seeded.
      3. The DB contents are returned.

    If the DB is not yet configured (early startup edge-case) the function
    falls back to the JSON file or built-in defaults without persisting.
    """
    try:
        from .db import get_db

        get_db()  # raises RuntimeError if not yet configured
    except RuntimeError:
        # DB not available: fall back without persisting
        return _load_from_file() or copy.deepcopy(DEFAULT_CONFIG)

    file_cfg = _load_from_file()
    db_cfg = _load_from_db()

    if db_cfg is None:
        # First boot: seed from file or defaults
        source = file_cfg if file_cfg is not None else copy.deepcopy(DEFAULT_CONFIG)
        save_config(source)
        return source

    if file_cfg is not None and file_cfg != db_cfg:
        # Key-level merge so keys only present in the DB survive.
        merged = {**db_cfg, **file_cfg}
        save_config(merged)
        return merged

    return db_cfg


def save_config(config: dict[str, Any]) -> None:
    """Persist every top-level key of *config* to the DB as JSON values.

    Uses upsert semantics so it is safe to call repeatedly.
    """
    for key, value in config.items():
        (
            AppConfig.insert(key=key, value=json.dumps(value))
            .on_conflict(
                conflict_target=[AppConfig.key],
                update={AppConfig.value: json.dumps(value)},
            )
            .execute()
        )


def get_section(config: dict[str, Any] | None, name: str) -> dict[str, Any]:
    """Return config section *name* with built-in defaults filled in.

    Stored configs written by older versions may lack newer keys; this keeps
    every component supplied with a complete set of thresholds.
    """
    section = dict(DEFAULT_CONFIG[name])
    if config:
        section.update(config.get(name) or {})
    return section


def get_db_path_from_env() -> str:
    """Return the SQLite path to use when no DATABASE_URL is set.

    Checks the ``METADATA_DB`` environment variable first, then falls back
    to ``runledger.sqlite3`` in the current working directory.
    """
    return os.environ.get("METADATA_DB", "runledger.sqlite3")
