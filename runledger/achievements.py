"""Achievement catalog and the rule engine that unlocks it.

The catalog is static data: each definition names a ``PredicateKind`` and a
target, and a single dispatcher table maps kinds to rules.  Adding an
achievement means adding a row to ``CATALOG``; evaluation code is untouched.

Progress rows are created for the whole catalog at once, the first time an
owner's achievements are read or evaluated.  Unlocking is monotonic: every
write is guarded by ``is_unlocked = False`` in SQL.  Writes are also a
compare-and-set on ``current_value``, so cumulative counters survive two
finishes for the same owner racing each other.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, NamedTuple

from peewee import BooleanField, CharField, DateTimeField, FloatField, Model

from .anticheat import METERS_PER_MILE
from .db import db, to_db_datetime
from .errors import PersistenceError

logger = logging.getLogger(__name__)


class Category(Enum):
    DISTANCE = "distance"
    SPEED = "speed"
    CONSISTENCY = "consistency"
    FREQUENCY = "frequency"
    SOCIAL = "social"


class PredicateKind(Enum):
    DISTANCE_THRESHOLD = "distance_threshold"  # single session meters >= target
    LIFETIME_DISTANCE = "lifetime_distance"  # cumulative meters >= target
    SPEED_THRESHOLD = "speed_threshold"  # best pace in seconds per mile <= target
    STREAK_THRESHOLD = "streak_threshold"  # current streak days >= target
    COUNT_THRESHOLD = "count_threshold"  # completed sessions >= target
    SOCIAL_COUNT = "social_count"  # connections >= target


@dataclass(frozen=True)
class AchievementDefinition:
    achievement_id: str
    title: str
    description: str
    category: Category
    predicate_kind: PredicateKind
    target_value: float


# fmt: off
CATALOG: tuple[AchievementDefinition, ...] = (
    AchievementDefinition(
        "first_run", "First Steps", "Complete your first run",
        Category.DISTANCE, PredicateKind.COUNT_THRESHOLD, 1,
    ),
    AchievementDefinition(
        "5k_runner", "5K Runner", "Run 5 kilometers in a single session",
        Category.DISTANCE, PredicateKind.DISTANCE_THRESHOLD, 5000,
    ),
    AchievementDefinition(
        "10k_runner", "10K Runner", "Run 10 kilometers in a single session",
        Category.DISTANCE, PredicateKind.DISTANCE_THRESHOLD, 10000,
    ),
    AchievementDefinition(
        "marathon_ready", "Marathon Ready", "Run a marathon's distance in total",
        Category.DISTANCE, PredicateKind.LIFETIME_DISTANCE, 42195,
    ),
    AchievementDefinition(
        "speed_demon", "Speed Demon", "Achieve a pace faster than 7:00 min/mi",
        Category.SPEED, PredicateKind.SPEED_THRESHOLD, 420,
    ),
    AchievementDefinition(
        "sprint_king", "Sprint King", "Achieve a pace faster than 6:00 min/mi",
        Category.SPEED, PredicateKind.SPEED_THRESHOLD, 360,
    ),
    AchievementDefinition(
        "consistency_king", "Consistency King", "Run 7 days in a row",
        Category.CONSISTENCY, PredicateKind.STREAK_THRESHOLD, 7,
    ),
    AchievementDefinition(
        "streak_master", "Streak Master", "Run 30 days in a row",
        Category.CONSISTENCY, PredicateKind.STREAK_THRESHOLD, 30,
    ),
    AchievementDefinition(
        "frequent_runner", "Frequent Runner", "Complete 10 runs",
        Category.FREQUENCY, PredicateKind.COUNT_THRESHOLD, 10,
    ),
    AchievementDefinition(
        "dedicated_runner", "Dedicated Runner", "Complete 50 runs",
        Category.FREQUENCY, PredicateKind.COUNT_THRESHOLD, 50,
    ),
    AchievementDefinition(
        "social_butterfly", "Social Butterfly", "Add 5 friends",
        Category.SOCIAL, PredicateKind.SOCIAL_COUNT, 5,
    ),
)
# fmt: on


# ---- facts and rules ---------------------------------------------------------


@dataclass(frozen=True)
class SessionFacts:
    """What the engine knows about one accepted run and its owner."""

    distance_meters: float
    duration_seconds: float
    average_speed_mps: float
    current_streak: int
    friend_count: int | None = None  # resolved lazily through the engine

    @property
    def pace_seconds_per_mile(self) -> float | None:
        if self.average_speed_mps <= 0:
            return None
        return METERS_PER_MILE / self.average_speed_mps


class RuleOutcome(NamedTuple):
    current_value: float
    progress_ratio: float
    satisfied: bool


def _ratio(value: float, target: float) -> float:
    if target <= 0:
        return 1.0
    return value / target


def _session_best_distance(target: float, current: float, facts: SessionFacts) -> tuple[float, float]:
    value = max(current, facts.distance_meters)
    return value, _ratio(value, target)


def _lifetime_distance(target: float, current: float, facts: SessionFacts) -> tuple[float, float]:
    value = current + facts.distance_meters
    return value, _ratio(value, target)


def _session_count(target: float, current: float, facts: SessionFacts) -> tuple[float, float]:
    value = current + 1
    return value, _ratio(value, target)


def _streak(target: float, current: float, facts: SessionFacts) -> tuple[float, float]:
    return facts.current_streak, _ratio(facts.current_streak, target)


def _social(target: float, current: float, facts: SessionFacts) -> tuple[float, float]:
    friends = facts.friend_count or 0
    return friends, _ratio(friends, target)


def _best_pace(target: float, current: float, facts: SessionFacts) -> tuple[float, float]:
    # Lower is better; 0 means no pace recorded yet
    pace = facts.pace_seconds_per_mile
    value = current
    if pace is not None and (current <= 0 or pace < current):
        value = pace
    if value <= 0:
        return value, 0.0
    return value, target / value


_RULES: dict[PredicateKind, Callable[[float, float, SessionFacts], tuple[float, float]]] = {
    PredicateKind.DISTANCE_THRESHOLD: _session_best_distance,
    PredicateKind.LIFETIME_DISTANCE: _lifetime_distance,
    PredicateKind.SPEED_THRESHOLD: _best_pace,
    PredicateKind.STREAK_THRESHOLD: _streak,
    PredicateKind.COUNT_THRESHOLD: _session_count,
    PredicateKind.SOCIAL_COUNT: _social,
}


def evaluate_rule(definition: AchievementDefinition, current_value: float, facts: SessionFacts) -> RuleOutcome:
    """Apply the rule for *definition*'s predicate kind; ratio is clamped to [0, 1]."""
    value, raw_ratio = _RULES[definition.predicate_kind](definition.target_value, current_value, facts)
    return RuleOutcome(value, min(max(raw_ratio, 0.0), 1.0), raw_ratio >= 1.0)


# ---- persistence -------------------------------------------------------------


class AchievementProgress(Model):
    owner_id = CharField(index=True)
    achievement_id = CharField()
    current_value = FloatField(default=0.0)
    progress_ratio = FloatField(default=0.0)
    is_unlocked = BooleanField(default=False)
    unlocked_at = DateTimeField(null=True)
    created_at = DateTimeField(null=True)

    class Meta:
        database = db
        table_name = "achievement_progress"
        indexes = ((("owner_id", "achievement_id"), True),)  # unique together

    def to_dict(self, definition: AchievementDefinition) -> dict[str, Any]:
        return {
            "achievement_id": self.achievement_id,
            "title": definition.title,
            "description": definition.description,
            "category": definition.category.value,
            "target_value": definition.target_value,
            "current_value": self.current_value,
            "progress_ratio": self.progress_ratio,
            "is_unlocked": self.is_unlocked,
            "unlocked_at": self.unlocked_at.isoformat() if self.unlocked_at else None,
        }


def _no_friends(owner_id: str) -> int:
    return 0


class AchievementEngine:
    """Evaluates the catalog against one owner's facts after each run.

    ``friend_count`` is the social collaborator: a callable returning the
    owner's number of connections.
    """

    def __init__(
        self,
        catalog: tuple[AchievementDefinition, ...] = CATALOG,
        friend_count: Callable[[str], int] = _no_friends,
        clock: Callable[[], datetime] | None = None,
        max_attempts: int = 5,
    ) -> None:
        self.catalog = catalog
        self.by_id = {d.achievement_id: d for d in catalog}
        self.friend_count = friend_count
        self.clock = clock or (lambda: datetime.now(UTC))
        self.max_attempts = max_attempts

    def ensure_rows(self, owner_id: str) -> list[AchievementProgress]:
        """Return the owner's progress rows, creating all missing ones in one insert."""
        rows = {r.achievement_id: r for r in self._select(owner_id)}
        missing = [d for d in self.catalog if d.achievement_id not in rows]
        if missing:
            now = to_db_datetime(self.clock())
            AchievementProgress.insert_many(
                [
                    {"owner_id": owner_id, "achievement_id": d.achievement_id, "created_at": now}
                    for d in missing
                ]
            ).on_conflict_ignore().execute()
            rows = {r.achievement_id: r for r in self._select(owner_id)}
        return [rows[d.achievement_id] for d in self.catalog if d.achievement_id in rows]

    def evaluate(self, owner_id: str, facts: SessionFacts) -> list[AchievementDefinition]:
        """Update every locked row for *owner_id*; return the newly unlocked definitions."""
        if facts.friend_count is None:
            facts = SessionFacts(
                facts.distance_meters,
                facts.duration_seconds,
                facts.average_speed_mps,
                facts.current_streak,
                self.friend_count(owner_id),
            )

        unlocked: list[AchievementDefinition] = []
        for row in self.ensure_rows(owner_id):
            definition = self.by_id[row.achievement_id]
            if self._apply(row, definition, facts):
                unlocked.append(definition)
                logger.info("achievement unlocked for %s: %s", owner_id, definition.title)
        return unlocked

    def get_achievements(self, owner_id: str) -> dict[str, Any]:
        """Catalog grouped by category with the owner's progress."""
        grouped: dict[str, list[dict[str, Any]]] = {c.value: [] for c in Category}
        rows = self.ensure_rows(owner_id)
        for row in rows:
            definition = self.by_id[row.achievement_id]
            grouped[definition.category.value].append(row.to_dict(definition))
        return {
            "achievements": grouped,
            "total": len(rows),
            "unlocked": sum(1 for r in rows if r.is_unlocked),
        }

    def _select(self, owner_id: str):
        return AchievementProgress.select().where(AchievementProgress.owner_id == owner_id)

    def _apply(self, row: AchievementProgress, definition: AchievementDefinition, facts: SessionFacts) -> bool:
        """Write the rule outcome for one row; True when this call unlocked it.

        The write is a compare-and-set on ``current_value``: if another finish
        moved the row since it was read, the row is re-read and the rule
        applied again on top of the fresh value.
        """
        for _ in range(self.max_attempts):
            if row.is_unlocked:
                return False
            outcome = evaluate_rule(definition, row.current_value, facts)
            if outcome.satisfied:
                fields = {
                    "current_value": outcome.current_value,
                    "progress_ratio": 1.0,
                    "is_unlocked": True,
                    "unlocked_at": to_db_datetime(self.clock()),
                }
            elif outcome.current_value == row.current_value and outcome.progress_ratio == row.progress_ratio:
                return False
            else:
                fields = {"current_value": outcome.current_value, "progress_ratio": outcome.progress_ratio}

            if self._update_unchanged(row, **fields):
                return outcome.satisfied
            logger.debug("achievement row %s for %s changed underneath us; retrying", row.achievement_id, row.owner_id)
            row = AchievementProgress.get_by_id(row.id)

        raise PersistenceError("achievements", f"{definition.achievement_id} for {row.owner_id} kept changing")

    @staticmethod
    def _update_unchanged(row: AchievementProgress, **fields) -> bool:
        query = AchievementProgress.update(**fields).where(
            (AchievementProgress.id == row.id)
            & (AchievementProgress.is_unlocked == False)  # noqa: E712
            & (AchievementProgress.current_value == row.current_value)
        )
        return query.execute() == 1
