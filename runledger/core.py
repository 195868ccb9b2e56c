"""Core runledger wiring: database, configuration and the ledger engines."""

from typing import Any
from zoneinfo import ZoneInfo

from .achievements import AchievementEngine
from .anticheat import AntiCheatValidator
from .appconfig import get_db_path_from_env, load_config
from .daily_goal import DailyGoalTracker
from .database import get_all_models, migrate_tables
from .db import configure_db, get_db
from .finish import FinishRequest, FinishResult, finish_session
from .session import RunSession, RunSessionMachine
from .streak import StreakEngine


class Ledger:
    """Configured database plus one instance of each engine.

    Used as a context manager by the CLI commands::

        with Ledger() as ledger:
            ledger.achievements.get_achievements(owner_id)
    """

    def __init__(self, db_path: str | None = None):
        configure_db(db_path or get_db_path_from_env())
        db = get_db()
        db.connect(reuse_if_open=True)

        # Always migrate tables on startup
        migrate_tables(get_all_models())

        self.config: dict[str, Any] = load_config()
        self.home_timezone = self.config.get("home_timezone", "UTC")
        self.home_tz = ZoneInfo(self.home_timezone)

        self.validator = AntiCheatValidator.from_config(self.config)
        self.daily_goal = DailyGoalTracker.from_config(self.config)
        self.streak = StreakEngine.from_config(self.config)
        self.achievements = AchievementEngine()

    def new_session(self, owner_id: str, **kwargs) -> RunSessionMachine:
        return RunSessionMachine.from_config(owner_id, self.config, **kwargs)

    def finish(self, session: RunSession) -> FinishResult:
        """Run the finish pipeline on a completed session's own metrics."""
        return finish_session(
            FinishRequest.from_session(session, self.home_timezone),
            self.config,
            validator=self.validator,
            goal_tracker=self.daily_goal,
            streak_engine=self.streak,
            achievement_engine=self.achievements,
        )

    def cleanup(self):
        """Close the database connection."""
        db = get_db()
        if not db.is_closed():
            db.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.cleanup()
