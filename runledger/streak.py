"""Consecutive-day streaks.

A day counts once the owner's daily goal is met.  ``advance_streak`` holds the
day-boundary rules as a pure function; ``StreakEngine`` persists the result
with a compare-and-set so two finishes racing for the same owner cannot lose
an update.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import Any, NamedTuple

from peewee import CharField, DateField, DateTimeField, IntegerField, Model

from .appconfig import get_section
from .db import db, to_db_datetime
from .errors import PersistenceError

logger = logging.getLogger(__name__)

FREEZE_TOKENS_MAX = 3


class StreakRecord(Model):
    owner_id = CharField(unique=True)
    current_streak = IntegerField(default=0)
    longest_streak = IntegerField(default=0)
    last_qualifying_date = DateField(null=True)
    freeze_tokens_remaining = IntegerField(default=FREEZE_TOKENS_MAX)
    updated_at = DateTimeField(null=True)

    class Meta:
        database = db
        table_name = "streak"

    def state(self) -> StreakState:
        return StreakState(
            self.current_streak,
            self.longest_streak,
            self.last_qualifying_date,
            self.freeze_tokens_remaining,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_qualifying_date": str(self.last_qualifying_date) if self.last_qualifying_date else None,
            "freeze_tokens_remaining": self.freeze_tokens_remaining,
        }


class StreakState(NamedTuple):
    current_streak: int
    longest_streak: int
    last_qualifying_date: date | None
    freeze_tokens_remaining: int


def advance_streak(
    state: StreakState,
    day: date,
    goal_met: bool,
    *,
    freeze_bridges_gap: bool = False,
    max_bridged_days: int = 1,
) -> StreakState:
    """Return the streak after a session on *day*; unchanged states are returned as-is."""
    if not goal_met:
        return state

    tokens = state.freeze_tokens_remaining
    if state.last_qualifying_date is None:
        current = 1
    else:
        days = (day - state.last_qualifying_date).days
        if days <= 0:
            # Already counted today, or a late upload for an earlier day
            return state
        if days == 1:
            current = state.current_streak + 1
        else:
            missed = days - 1
            if freeze_bridges_gap and state.current_streak > 0 and missed <= min(max_bridged_days, tokens):
                tokens -= missed
                current = state.current_streak + 1
            else:
                current = 1

    return StreakState(current, max(state.longest_streak, current), day, tokens)


class StreakEngine:
    def __init__(
        self,
        freeze_bridges_gap: bool = False,
        max_bridged_days: int = 1,
        initial_freeze_tokens: int = FREEZE_TOKENS_MAX,
        max_attempts: int = 5,
    ) -> None:
        self.freeze_bridges_gap = freeze_bridges_gap
        self.max_bridged_days = max_bridged_days
        self.initial_freeze_tokens = max(0, min(initial_freeze_tokens, FREEZE_TOKENS_MAX))
        self.max_attempts = max_attempts

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> StreakEngine:
        section = get_section(config, "streak")
        return cls(
            freeze_bridges_gap=bool(section["freeze_bridges_gap"]),
            max_bridged_days=int(section["max_bridged_days"]),
            initial_freeze_tokens=int(section["initial_freeze_tokens"]),
        )

    def get(self, owner_id: str) -> StreakRecord | None:
        return StreakRecord.get_or_none(StreakRecord.owner_id == owner_id)

    def record_day(self, owner_id: str, day: date, goal_met: bool) -> StreakRecord | None:
        """Count *day* toward the owner's streak if the daily goal was met."""
        if not goal_met:
            return self.get(owner_id)

        self._ensure_record(owner_id)
        for _ in range(self.max_attempts):
            record = self.get(owner_id)
            before = record.state()
            after = advance_streak(
                before,
                day,
                goal_met,
                freeze_bridges_gap=self.freeze_bridges_gap,
                max_bridged_days=self.max_bridged_days,
            )
            if after == before:
                return record

            updated = (
                StreakRecord.update(
                    current_streak=after.current_streak,
                    longest_streak=after.longest_streak,
                    last_qualifying_date=after.last_qualifying_date,
                    freeze_tokens_remaining=after.freeze_tokens_remaining,
                    updated_at=to_db_datetime(datetime.now(UTC)),
                )
                .where(self._unchanged_since(record))
                .execute()
            )
            if updated == 1:
                if after.freeze_tokens_remaining < before.freeze_tokens_remaining:
                    logger.info("streak for %s bridged with a freeze token", owner_id)
                return self.get(owner_id)
            logger.debug("streak row for %s changed underneath us; retrying", owner_id)

        raise PersistenceError("streak", f"streak for {owner_id} kept changing during update")

    def grant_freeze_token(self, owner_id: str) -> StreakRecord:
        """Give the owner one freeze token, never exceeding the cap."""
        self._ensure_record(owner_id)
        (
            StreakRecord.update(freeze_tokens_remaining=StreakRecord.freeze_tokens_remaining + 1)
            .where(
                (StreakRecord.owner_id == owner_id) & (StreakRecord.freeze_tokens_remaining < FREEZE_TOKENS_MAX)
            )
            .execute()
        )
        return self.get(owner_id)

    def _ensure_record(self, owner_id: str) -> None:
        StreakRecord.insert(
            owner_id=owner_id,
            current_streak=0,
            longest_streak=0,
            last_qualifying_date=None,
            freeze_tokens_remaining=self.initial_freeze_tokens,
        ).on_conflict_ignore().execute()

    @staticmethod
    def _unchanged_since(record: StreakRecord):
        if record.last_qualifying_date is None:
            same_day = StreakRecord.last_qualifying_date.is_null()
        else:
            same_day = StreakRecord.last_qualifying_date == record.last_qualifying_date
        return (
            (StreakRecord.id == record.id)
            & (StreakRecord.current_streak == record.current_streak)
            & (StreakRecord.freeze_tokens_remaining == record.freeze_tokens_remaining)
            & same_day
        )
