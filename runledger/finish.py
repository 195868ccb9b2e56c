"""Finishing a run: validation plus the ledger writes, exactly once.

``finish_session`` is the only place that touches more than one ledger.  The
writes run inside a single transaction in data-dependency order (the streak
needs to know whether today's goal was met), and a ``FinishReceipt`` keyed by
``session_id`` is written last so a retried finish returns the stored outcome
instead of counting the run twice.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from peewee import CharField, DateTimeField, IntegrityError, Model, PeeweeException, TextField

from .achievements import AchievementEngine, SessionFacts
from .anticheat import AntiCheatValidator, ValidationResult
from .daily_goal import DailyGoalTracker
from .db import db, to_db_datetime
from .errors import PersistenceError, SessionNotFound
from .run import Run, save_route
from .session import RunSession
from .streak import StreakEngine

logger = logging.getLogger(__name__)

# Steps whose unique keys detect a concurrent finish of the same session
_DUPLICATE_STEPS = ("run", "receipt")


class FinishReceipt(Model):
    session_id = CharField(unique=True)
    owner_id = CharField(index=True)
    result = TextField()  # JSON FinishResult
    created = DateTimeField()

    class Meta:
        database = db
        table_name = "finish_receipt"


@dataclass
class FinishRequest:
    session_id: str
    owner_id: str
    distance_meters: float
    duration_seconds: float
    session_date: date
    average_speed_mps: float | None = None
    peak_speed_mps: float | None = None
    calories_estimate: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None
    route: list[dict[str, Any]] | None = None

    @classmethod
    def from_session(cls, session: RunSession, home_timezone: str = "UTC") -> FinishRequest:
        """Build a request from a completed session's own metrics.

        The session date is the local calendar day the run started on.
        """
        started = session.start_time or session.end_time or datetime.now(UTC)
        return cls(
            session_id=session.id,
            owner_id=session.owner_id,
            distance_meters=session.distance_meters,
            duration_seconds=session.elapsed_seconds,
            session_date=started.astimezone(ZoneInfo(home_timezone)).date(),
            average_speed_mps=session.average_speed_mps or None,
            peak_speed_mps=session.peak_speed_mps,
            calories_estimate=session.calories_estimate,
            start_time=session.start_time,
            end_time=session.end_time,
            route=[point.to_dict() for point in session.route],
        )


@dataclass
class FinishResult:
    session_id: str
    gems_earned: int
    is_flagged: bool
    daily_progress: dict[str, Any]
    streak: dict[str, Any] | None
    unlocked_achievements: list[str] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FinishResult:
        return cls(**data)


def stored_result(session_id: str, owner_id: str | None = None) -> FinishResult | None:
    """Return the recorded outcome of an already finished session, if any."""
    receipt = FinishReceipt.get_or_none(FinishReceipt.session_id == session_id)
    if receipt is None or (owner_id is not None and receipt.owner_id != owner_id):
        return None
    return _from_receipt(receipt)


def _from_receipt(receipt: FinishReceipt) -> FinishResult:
    result = FinishResult.from_dict(json.loads(receipt.result))
    result.replayed = True
    return result


def finish_session(
    request: FinishRequest,
    config: dict[str, Any] | None = None,
    *,
    validator: AntiCheatValidator | None = None,
    goal_tracker: DailyGoalTracker | None = None,
    streak_engine: StreakEngine | None = None,
    achievement_engine: AchievementEngine | None = None,
) -> FinishResult:
    """Validate a finished run and apply it to every ledger.

    Raises ``ValidationError`` (nothing written) or ``PersistenceError``
    (everything rolled back).  Calling again with the same ``session_id``
    returns the first outcome with ``replayed=True``.
    """
    validator = validator or AntiCheatValidator.from_config(config)
    goal_tracker = goal_tracker or DailyGoalTracker.from_config(config)
    streak_engine = streak_engine or StreakEngine.from_config(config)
    achievement_engine = achievement_engine or AchievementEngine()

    previous = _replay(request)
    if previous is not None:
        return previous

    validation = validator.validate(request.distance_meters, request.duration_seconds, request.average_speed_mps)

    step = "run"
    try:
        with db.atomic():
            _save_run(request, validation)

            step = "daily_goal"
            progress = goal_tracker.record(
                request.owner_id,
                request.session_date,
                request.duration_seconds,
                validation.gems_earned,
            )

            step = "streak"
            streak = streak_engine.record_day(request.owner_id, request.session_date, progress.goal_met)

            step = "achievements"
            facts = SessionFacts(
                distance_meters=validation.distance_meters,
                duration_seconds=validation.duration_seconds,
                average_speed_mps=validation.average_speed_mps,
                current_streak=streak.current_streak if streak else 0,
            )
            unlocked = achievement_engine.evaluate(request.owner_id, facts)

            step = "receipt"
            result = FinishResult(
                session_id=request.session_id,
                gems_earned=validation.gems_earned,
                is_flagged=validation.is_flagged,
                daily_progress=progress.to_dict(),
                streak=streak.to_dict() if streak else None,
                unlocked_achievements=[d.title for d in unlocked],
            )
            FinishReceipt.create(
                session_id=request.session_id,
                owner_id=request.owner_id,
                result=json.dumps(result.to_dict()),
                created=to_db_datetime(datetime.now(UTC)),
            )
    except IntegrityError as e:
        if step in _DUPLICATE_STEPS:
            winner = _replay(request)
            if winner is not None:
                logger.info("session %s was finished concurrently; returning stored result", request.session_id)
                return winner
        raise PersistenceError(step, str(e)) from e
    except PeeweeException as e:
        logger.error("finish of session %s failed at %s: %s", request.session_id, step, e)
        raise PersistenceError(step, str(e)) from e

    logger.info(
        "session %s finished for %s: %d gems, %d unlocked%s",
        request.session_id,
        request.owner_id,
        result.gems_earned,
        len(result.unlocked_achievements),
        " (flagged)" if result.is_flagged else "",
    )
    return result


def _replay(request: FinishRequest) -> FinishResult | None:
    receipt = FinishReceipt.get_or_none(FinishReceipt.session_id == request.session_id)
    if receipt is None:
        return None
    if receipt.owner_id != request.owner_id:
        raise SessionNotFound(request.session_id)
    return _from_receipt(receipt)


def _save_run(request: FinishRequest, validation: ValidationResult) -> Run:
    distance_km = validation.distance_meters / 1000.0
    run = Run.create(
        session_id=request.session_id,
        owner_id=request.owner_id,
        start_time=to_db_datetime(request.start_time) if request.start_time else None,
        end_time=to_db_datetime(request.end_time) if request.end_time else None,
        date=request.session_date,
        distance_meters=validation.distance_meters,
        duration_seconds=validation.duration_seconds,
        average_speed_mps=validation.average_speed_mps,
        peak_speed_mps=request.peak_speed_mps or 0.0,
        average_pace_min_per_km=(validation.duration_seconds / 60.0) / distance_km,
        calories_estimate=request.calories_estimate,
        gems_earned=validation.gems_earned,
        is_flagged=validation.is_flagged,
    )
    if request.route:
        save_route(request.session_id, request.route)
    return run
