from peewee import Model

from .achievements import AchievementProgress
from .appconfig import AppConfig
from .daily_goal import DailyProgress
from .db import get_db
from .finish import FinishReceipt
from .run import Run, RunRoute
from .streak import StreakRecord


def migrate_tables(models: list[type[Model]]) -> None:
    """Create any missing tables and indexes; safe to run on every start."""
    db = get_db()
    db.connect(reuse_if_open=True)
    db.create_tables(models, safe=True)
    db.close()


def get_all_models() -> list[type[Model]]:
    return [
        AppConfig,
        Run,
        RunRoute,
        DailyProgress,
        StreakRecord,
        AchievementProgress,
        FinishReceipt,
    ]
