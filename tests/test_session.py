import threading
from datetime import timedelta

import pytest

from runledger.errors import INVALID_TRANSITION, SESSION_ALREADY_ACTIVE, SessionNotFound, StateError
from runledger.geo import GeoSample
from runledger.session import RunSessionMachine, SessionRegistry, SessionState

METERS_PER_DEGREE_LAT = 111319.49


def make_machine(clock, **kwargs):
    return RunSessionMachine("owner-1", "sess-1", clock=clock, run_ticker=False, **kwargs)


def at(clock, north_m, accuracy=5.0, speed=None):
    return GeoSample(40.0 + north_m / METERS_PER_DEGREE_LAT, -75.0, accuracy, clock.now, speed)


class TestLifecycle:
    def test_start_from_idle(self, clock):
        machine = make_machine(clock)
        assert machine.state is SessionState.IDLE
        snap = machine.start()
        assert snap.state is SessionState.ACTIVE
        assert snap.start_time == clock.now
        assert snap.distance_meters == 0

    @pytest.mark.parametrize("action", ["pause", "resume", "finish"])
    def test_invalid_from_idle(self, clock, action):
        machine = make_machine(clock)
        with pytest.raises(StateError) as exc:
            getattr(machine, action)()
        assert exc.value.code == INVALID_TRANSITION
        assert machine.state is SessionState.IDLE

    def test_double_start_rejected(self, clock):
        machine = make_machine(clock)
        machine.start()
        with pytest.raises(StateError):
            machine.start()

    def test_resume_while_active_rejected(self, clock):
        machine = make_machine(clock)
        machine.start()
        with pytest.raises(StateError):
            machine.resume()

    def test_completed_is_terminal(self, clock):
        machine = make_machine(clock)
        machine.start()
        final = machine.finish()
        assert final.state is SessionState.COMPLETED
        for action in ("start", "pause", "resume", "finish"):
            with pytest.raises(StateError):
                getattr(machine, action)()
        with pytest.raises(StateError):
            machine.ingest(at(clock, 0))
        assert machine.snapshot() is final

    def test_finish_from_paused(self, clock):
        machine = make_machine(clock)
        machine.start()
        clock.advance(60)
        machine.pause()
        clock.advance(600)
        final = machine.finish()
        assert final.elapsed_seconds == 60
        assert final.end_time == clock.now


class TestMetrics:
    def test_distance_is_sum_of_accepted_steps(self, clock):
        machine = make_machine(clock)
        machine.start()
        machine.ingest(at(clock, 0))
        for north in (10, 20, 20.5, 30, 300, 310):
            clock.advance(4)
            machine.ingest(at(clock, north))
        machine.ingest(at(clock, 320, accuracy=50))
        machine.tick()
        snap = machine.snapshot()
        # 10 + 10 + (30 - 20) + (310 - 300); 0.5 m jitter dropped, 270 m jump dropped
        assert snap.distance_meters == pytest.approx(40, abs=0.1)

    def test_samples_only_applied_on_tick(self, clock):
        machine = make_machine(clock)
        machine.start()
        machine.ingest(at(clock, 0))
        clock.advance(5)
        machine.ingest(at(clock, 10))
        assert machine.snapshot().distance_meters == 0
        machine.tick()
        assert machine.snapshot().distance_meters == pytest.approx(10, abs=0.05)

    def test_pace_calories_and_peak_speed(self, clock):
        machine = make_machine(clock)
        machine.start()
        machine.ingest(at(clock, 0))
        for i in range(1, 101):
            clock.advance(3)
            machine.ingest(at(clock, i * 10))
        snap = machine.tick()
        assert snap.distance_meters == pytest.approx(1000, abs=1)
        assert snap.elapsed_seconds == 300
        assert snap.current_pace_min_per_km == pytest.approx(5.0, rel=1e-3)
        assert snap.average_pace_min_per_km == snap.current_pace_min_per_km
        assert snap.peak_speed_mps == pytest.approx(10 / 3, rel=1e-3)
        assert snap.calories_estimate == 25

    def test_reported_instant_speed_wins(self, clock):
        machine = make_machine(clock)
        machine.start()
        machine.ingest(at(clock, 0))
        clock.advance(5)
        machine.ingest(at(clock, 10, speed=6.5))
        assert machine.tick().peak_speed_mps == 6.5

    def test_paused_time_and_samples_excluded(self, clock):
        machine = make_machine(clock)
        machine.start()
        machine.ingest(at(clock, 0))
        clock.advance(60)
        machine.ingest(at(clock, 50))
        machine.pause()
        clock.advance(300)
        assert machine.ingest(at(clock, 90)) is False
        assert machine.tick() is None
        machine.resume()
        clock.advance(30)
        machine.ingest(at(clock, 95))
        final = machine.finish()
        assert final.elapsed_seconds == 90
        assert final.distance_meters == pytest.approx(95, abs=0.1)

    def test_route_points_collected(self, clock):
        machine = make_machine(clock)
        machine.start()
        for i in range(4):
            machine.ingest(at(clock, i * 10))
            clock.advance(5)
        final = machine.finish()
        assert len(final.route) == 4
        assert final.to_dict()["route_points"] == 4
        assert len(final.to_dict(include_route=True)["route"]) == 4

    def test_snapshot_is_immutable(self, clock):
        machine = make_machine(clock)
        snap = machine.start()
        with pytest.raises(AttributeError):
            snap.distance_meters = 5


class TestObservers:
    def test_observers_receive_full_snapshots(self, clock):
        machine = make_machine(clock)
        seen = []
        machine.subscribe(seen.append)
        machine.start()
        machine.ingest(at(clock, 0))
        clock.advance(5)
        machine.ingest(at(clock, 10))
        machine.tick()
        machine.finish()
        assert [s.state for s in seen] == [SessionState.ACTIVE, SessionState.ACTIVE, SessionState.COMPLETED]
        assert seen[1].distance_meters == pytest.approx(10, abs=0.05)

    def test_failing_observer_does_not_break_session(self, clock):
        machine = make_machine(clock)

        def broken(snapshot):
            raise RuntimeError("boom")

        machine.subscribe(broken)
        assert machine.start().state is SessionState.ACTIVE

    def test_ticker_thread_publishes(self):
        machine = RunSessionMachine("owner-1", tick_seconds=0.01)
        ticked = threading.Event()
        machine.subscribe(lambda snap: ticked.set() if snap.elapsed_seconds > 0 else None)
        machine.start()
        try:
            assert ticked.wait(2.0)
        finally:
            machine.finish()

    def test_pause_resume_leaves_one_ticker(self):
        machine = RunSessionMachine("owner-1", tick_seconds=0.01)
        machine.start()
        tickers = [machine._ticker]
        for _ in range(3):
            machine.pause()
            assert machine._ticker is None
            machine.resume()
            tickers.append(machine._ticker)
        machine.finish()
        assert len({id(t) for t in tickers}) == 4
        for ticker in tickers:
            ticker.join(1.0)
            assert not ticker.is_alive()


class TestSessionRegistry:
    def make_registry(self, clock):
        return SessionRegistry(lambda owner: RunSessionMachine(owner, clock=clock, run_ticker=False))

    def test_one_active_session_per_owner(self, clock):
        registry = self.make_registry(clock)
        machine = registry.start("alice")
        with pytest.raises(StateError) as exc:
            registry.start("alice")
        assert exc.value.code == SESSION_ALREADY_ACTIVE
        assert exc.value.session_id == machine.session_id
        registry.start("bob")
        assert len(registry) == 2

    def test_finish_frees_owner(self, clock):
        registry = self.make_registry(clock)
        machine = registry.start("alice")
        clock.advance(timedelta(minutes=1).total_seconds())
        final = registry.finish(machine.session_id, "alice")
        assert final.state is SessionState.COMPLETED
        assert registry.active_session_id("alice") is None
        assert registry.start("alice").session_id != machine.session_id

    def test_other_owner_cannot_see_session(self, clock):
        registry = self.make_registry(clock)
        machine = registry.start("alice")
        with pytest.raises(SessionNotFound):
            registry.get(machine.session_id, "mallory")
        with pytest.raises(SessionNotFound):
            registry.get("missing")
        assert registry.get(machine.session_id, "alice") is machine

    def test_complete_keeps_session_until_released(self, clock):
        registry = self.make_registry(clock)
        machine = registry.start("alice")
        clock.advance(60)
        first = registry.complete(machine.session_id, "alice")
        assert first.state is SessionState.COMPLETED
        assert machine.session_id in registry
        assert registry.active_session_id("alice") is None

        clock.advance(60)
        again = registry.complete(machine.session_id, "alice")
        assert again == first

        registry.release(machine.session_id)
        assert machine.session_id not in registry
        with pytest.raises(SessionNotFound):
            registry.complete(machine.session_id, "alice")
