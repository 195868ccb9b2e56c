from datetime import date, timedelta

import peewee
import pytest

import runledger.finish as finish_module
from runledger.achievements import AchievementEngine, AchievementProgress
from runledger.daily_goal import DailyProgress
from runledger.errors import DISTANCE_VIOLATION, PersistenceError, SessionNotFound, ValidationError
from runledger.finish import FinishReceipt, FinishRequest, finish_session, stored_result
from runledger.geo import GeoSample
from runledger.run import Run, get_route
from runledger.session import RunSessionMachine
from runledger.streak import StreakRecord

D1 = date(2024, 6, 1)


def request(session_id="s1", owner="alice", distance=5200.0, duration=1800.0, speed=None, on=D1, **kwargs):
    return FinishRequest(
        session_id=session_id,
        owner_id=owner,
        distance_meters=distance,
        duration_seconds=duration,
        session_date=on,
        average_speed_mps=speed,
        **kwargs,
    )


def table_counts():
    return {
        model.__name__: model.select().count()
        for model in (Run, DailyProgress, StreakRecord, AchievementProgress, FinishReceipt)
    }


class TestFinishSession:
    def test_zero_distance_rejected_and_nothing_written(self):
        with pytest.raises(ValidationError) as exc:
            finish_session(request(distance=0.0, duration=900))
        assert exc.value.code == DISTANCE_VIOLATION
        assert set(table_counts().values()) == {0}

    def test_first_5k_run(self):
        result = finish_session(request(speed=5200 / 1800))
        assert set(result.unlocked_achievements) == {"First Steps", "5K Runner"}
        assert result.gems_earned == 3
        assert not result.is_flagged
        assert not result.replayed
        assert result.streak["current_streak"] == 1
        assert result.daily_progress["goal_met"]
        assert result.daily_progress["gems_earned_today"] == 3

        run = Run.get(Run.session_id == "s1")
        assert run.distance_meters == 5200.0
        assert run.average_pace_min_per_km == pytest.approx(30 / 5.2)
        assert run.date == D1

    def test_elite_speed_flagged_but_recorded(self):
        result = finish_session(request(distance=2000.0, duration=160, speed=45 / 3.6))
        assert result.is_flagged
        assert Run.get(Run.session_id == "s1").is_flagged
        assert "First Steps" in result.unlocked_achievements

    def test_streak_across_a_gap(self):
        for n in (1, 2, 3):
            finish_session(request(f"s{n}", distance=3000, duration=1200, on=D1 + timedelta(days=n - 1)))
        result = finish_session(request("s6", distance=3000, duration=1200, on=D1 + timedelta(days=5)))
        assert result.streak["current_streak"] == 1
        assert result.streak["longest_streak"] == 3

    def test_short_session_does_not_advance_streak(self):
        result = finish_session(request(distance=1000, duration=300))
        assert result.streak is None
        assert not result.daily_progress["goal_met"]
        # a second session the same day tips the goal over
        result = finish_session(request("s2", distance=2000, duration=700))
        assert result.daily_progress["goal_met"]
        assert result.streak["current_streak"] == 1

    def test_finish_is_idempotent(self):
        first = finish_session(request(speed=5200 / 1800))
        counts = table_counts()
        second = finish_session(request(speed=5200 / 1800))
        assert second.replayed
        assert second.unlocked_achievements == first.unlocked_achievements
        assert second.daily_progress == first.daily_progress
        assert table_counts() == counts
        assert DailyProgress.get().seconds_completed == 1800

    def test_replay_for_another_owner_is_not_found(self):
        finish_session(request())
        with pytest.raises(SessionNotFound):
            finish_session(request(owner="mallory"))
        assert stored_result("s1", "mallory") is None
        assert stored_result("s1", "alice").replayed

    def test_failed_step_rolls_everything_back(self, monkeypatch):
        def broken(self, owner_id, facts):
            raise peewee.OperationalError("disk I/O error")

        monkeypatch.setattr(AchievementEngine, "evaluate", broken)
        with pytest.raises(PersistenceError) as exc:
            finish_session(request())
        assert exc.value.step == "achievements"
        assert exc.value.to_dict()["step"] == "achievements"
        assert set(table_counts().values()) == {0}

        monkeypatch.undo()
        result = finish_session(request())
        assert not result.replayed
        assert DailyProgress.get().seconds_completed == 1800

    def test_concurrent_duplicate_returns_winner(self, monkeypatch):
        winner = finish_session(request())
        real_replay = finish_module._replay
        calls = []

        def late_replay(req):
            # the loser checked for a receipt before the winner committed
            calls.append(req.session_id)
            return None if len(calls) == 1 else real_replay(req)

        monkeypatch.setattr(finish_module, "_replay", late_replay)
        loser = finish_session(request())
        assert loser.replayed
        assert loser.gems_earned == winner.gems_earned
        assert Run.select().count() == 1
        assert DailyProgress.get().seconds_completed == 1800

    def test_route_is_stored(self):
        route = [{"lat": 40.0, "lng": -75.0, "timestamp": "2024-06-01T07:00:00+00:00"}]
        finish_session(request(route=route))
        assert get_route("s1") == route

    def test_from_completed_session(self, clock):
        machine = RunSessionMachine("alice", "live-1", clock=clock, run_ticker=False)
        machine.start()
        for i in range(0, 301):
            machine.ingest(GeoSample(40.0 + i * 10 / 111319.49, -75.0, 5.0, clock.now))
            clock.advance(3)
            machine.tick()
        completed = machine.finish()

        req = FinishRequest.from_session(completed, "America/New_York")
        assert req.session_date == date(2024, 6, 1)
        assert req.duration_seconds == completed.elapsed_seconds
        result = finish_session(req)
        assert result.daily_progress["goal_met"]
        assert "First Steps" in result.unlocked_achievements
        assert len(get_route("live-1")) == 301
