"""Daily active-time goal: one row per (owner, calendar date)."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any

from peewee import CharField, DateField, DateTimeField, FloatField, IntegerField, Model

from .appconfig import get_section
from .db import db, to_db_datetime


class DailyProgress(Model):
    owner_id = CharField(index=True)
    date = DateField(index=True)
    seconds_completed = FloatField(default=0.0)  # every session's seconds, never clamped
    minutes_goal = IntegerField(default=15)
    gems_earned_today = IntegerField(default=0)
    updated_at = DateTimeField(null=True)

    class Meta:
        database = db
        table_name = "daily_progress"
        indexes = ((("owner_id", "date"), True),)  # unique together

    @property
    def goal_seconds(self) -> int:
        return self.minutes_goal * 60

    @property
    def goal_met(self) -> bool:
        return self.seconds_completed >= self.goal_seconds

    @property
    def progress_ratio(self) -> float:
        if self.goal_seconds <= 0:
            return 0.0
        return min(1.0, self.seconds_completed / self.goal_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "date": str(self.date),
            "seconds_completed": self.seconds_completed,
            "minutes_goal": self.minutes_goal,
            "gems_earned_today": self.gems_earned_today,
            "goal_met": self.goal_met,
            "progress_ratio": self.progress_ratio,
        }


class DailyGoalTracker:
    def __init__(self, default_minutes_goal: int = 15) -> None:
        self.default_minutes_goal = default_minutes_goal

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> DailyGoalTracker:
        return cls(default_minutes_goal=int(get_section(config, "daily_goal")["minutes_goal"]))

    def record(self, owner_id: str, day: date, seconds: float, gems: int = 0) -> DailyProgress:
        """Add a session's seconds and gems to the day's row in one upsert.

        The increment happens inside the database so two finishes landing at the
        same time both count.
        """
        now = to_db_datetime(datetime.now(UTC))
        (
            DailyProgress.insert(
                owner_id=owner_id,
                date=day,
                seconds_completed=seconds,
                minutes_goal=self.default_minutes_goal,
                gems_earned_today=gems,
                updated_at=now,
            )
            .on_conflict(
                conflict_target=[DailyProgress.owner_id, DailyProgress.date],
                update={
                    DailyProgress.seconds_completed: DailyProgress.seconds_completed + seconds,
                    DailyProgress.gems_earned_today: DailyProgress.gems_earned_today + gems,
                    DailyProgress.updated_at: now,
                },
            )
            .execute()
        )
        return self._fetch(owner_id, day)

    def get(self, owner_id: str, day: date) -> DailyProgress | None:
        return DailyProgress.get_or_none((DailyProgress.owner_id == owner_id) & (DailyProgress.date == day))

    def set_minutes_goal(self, owner_id: str, day: date, minutes: int) -> DailyProgress:
        if minutes < 0:
            raise ValueError("minutes goal cannot be negative")
        (
            DailyProgress.insert(owner_id=owner_id, date=day, minutes_goal=minutes, updated_at=to_db_datetime(datetime.now(UTC)))
            .on_conflict(
                conflict_target=[DailyProgress.owner_id, DailyProgress.date],
                update={DailyProgress.minutes_goal: minutes},
            )
            .execute()
        )
        return self._fetch(owner_id, day)

    def _fetch(self, owner_id: str, day: date) -> DailyProgress:
        return DailyProgress.get((DailyProgress.owner_id == owner_id) & (DailyProgress.date == day))
