"""Ledger read views: achievements, streak, daily progress and totals."""

from db_init import load_runledger_config
from flask import Blueprint, jsonify, request
from helpers import current_owner_id, error_body, parse_date

from runledger.achievements import AchievementEngine
from runledger.daily_goal import DailyGoalTracker
from runledger.stats import get_lifetime_totals
from runledger.streak import StreakEngine

achievements_bp = Blueprint("achievements", __name__)


@achievements_bp.route("/api/achievements")
def api_achievements():
    """Catalog grouped by category with the owner's progress."""
    return jsonify(AchievementEngine().get_achievements(current_owner_id()))


@achievements_bp.route("/api/streak")
def api_streak():
    owner_id = current_owner_id()
    engine = StreakEngine.from_config(load_runledger_config())
    record = engine.get(owner_id)
    if record is None:
        # No qualifying day yet is a normal state, not an error
        return jsonify(
            {
                "owner_id": owner_id,
                "current_streak": 0,
                "longest_streak": 0,
                "last_qualifying_date": None,
                "freeze_tokens_remaining": engine.initial_freeze_tokens,
            }
        )
    return jsonify(record.to_dict())


@achievements_bp.route("/api/daily-progress")
def api_daily_progress():
    """Progress for ``?date=YYYY-MM-DD``, defaulting to today in the home timezone."""
    owner_id = current_owner_id()
    config = load_runledger_config()
    try:
        day = parse_date(request.args.get("date"), config)
    except ValueError as e:
        return jsonify(error_body("BadRequest", f"invalid date: {e}")), 400

    tracker = DailyGoalTracker.from_config(config)
    progress = tracker.get(owner_id, day)
    if progress is None:
        return jsonify(
            {
                "owner_id": owner_id,
                "date": str(day),
                "seconds_completed": 0.0,
                "minutes_goal": tracker.default_minutes_goal,
                "gems_earned_today": 0,
                "goal_met": tracker.default_minutes_goal == 0,
                "progress_ratio": 0.0,
            }
        )
    return jsonify(progress.to_dict())


@achievements_bp.route("/api/stats")
def api_stats():
    """Lifetime totals for the owner."""
    return jsonify(get_lifetime_totals(current_owner_id()))
