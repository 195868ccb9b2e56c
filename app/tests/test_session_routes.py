"""Tests for the live session and finish routes."""

import pytest

from runledger.finish import FinishReceipt
from runledger.run import Run

METERS_PER_DEGREE_LAT = 111319.49


def point(clock, north_m, accuracy=5.0):
    return {
        "latitude": 40.0 + north_m / METERS_PER_DEGREE_LAT,
        "longitude": -75.0,
        "horizontal_accuracy_m": accuracy,
        "timestamp": clock.now.isoformat(),
    }


def start(client, headers):
    response = client.post("/api/sessions", headers=headers)
    assert response.status_code == 201
    return response.get_json()["session_id"]


def run_track(client, headers, clock, session_id, meters, step_m=10, step_s=3):
    samples = []
    for i in range(meters // step_m + 1):
        samples.append(point(clock, i * step_m))
        clock.advance(step_s)
    response = client.post(f"/api/sessions/{session_id}/samples", json={"samples": samples}, headers=headers)
    assert response.status_code == 202
    return response


class TestSessionLifecycle:
    def test_start_returns_active_session(self, client, headers):
        response = client.post("/api/sessions", headers=headers)
        body = response.get_json()
        assert response.status_code == 201
        assert body["session"]["state"] == "Active"
        assert body["session"]["owner_id"] == "alice"

    def test_second_start_conflicts(self, client, headers):
        session_id = start(client, headers)
        response = client.post("/api/sessions", headers=headers)
        assert response.status_code == 409
        assert response.get_json()["error"] == "SessionAlreadyActive"
        # other owners are unaffected
        assert client.post("/api/sessions", headers={"X-Owner-Id": "bob"}).status_code == 201
        assert session_id

    def test_pause_resume_and_invalid_transition(self, client, headers):
        session_id = start(client, headers)
        assert client.post(f"/api/sessions/{session_id}/pause", headers=headers).get_json()["state"] == "Paused"
        response = client.post(f"/api/sessions/{session_id}/pause", headers=headers)
        assert response.status_code == 409
        assert response.get_json()["error"] == "InvalidTransition"
        assert client.post(f"/api/sessions/{session_id}/resume", headers=headers).get_json()["state"] == "Active"

    def test_samples_dropped_while_paused(self, client, headers, web_clock):
        session_id = start(client, headers)
        client.post(f"/api/sessions/{session_id}/pause", headers=headers)
        response = client.post(f"/api/sessions/{session_id}/samples", json=point(web_clock, 0), headers=headers)
        assert response.status_code == 202
        assert response.get_json() == {"buffered": 0, "dropped": 1}

    def test_invalid_sample_payload(self, client, headers):
        session_id = start(client, headers)
        response = client.post(f"/api/sessions/{session_id}/samples", json={"latitude": 1}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["error"] == "BadRequest"

    def test_other_owner_gets_not_found(self, client, headers):
        session_id = start(client, headers)
        response = client.get(f"/api/sessions/{session_id}", headers={"X-Owner-Id": "mallory"})
        assert response.status_code == 404
        assert response.get_json()["error"] == "SessionNotFound"

    def test_snapshot_with_route(self, client, headers, web_clock):
        session_id = start(client, headers)
        run_track(client, headers, web_clock, session_id, 100)
        body = client.get(f"/api/sessions/{session_id}?route=1", headers=headers).get_json()
        # samples are applied on the next tick, not on ingest
        assert body["distance_meters"] == 0
        assert body["route"] == []


class TestFinish:
    def test_finish_live_session(self, client, headers, web_clock):
        session_id = start(client, headers)
        run_track(client, headers, web_clock, session_id, 5200)
        response = client.post(f"/api/sessions/{session_id}/finish", headers=headers)
        assert response.status_code == 200
        body = response.get_json()
        assert set(body["unlocked_achievements"]) == {"First Steps", "5K Runner"}
        assert body["gems_earned"] == 3
        assert body["streak"]["current_streak"] == 1
        assert not body["replayed"]

        run = Run.get(Run.session_id == session_id)
        assert run.distance_meters == pytest.approx(5200, abs=1)
        assert run.duration_seconds == 521 * 3

        again = client.post(f"/api/sessions/{session_id}/finish", headers=headers).get_json()
        assert again["replayed"]
        assert FinishReceipt.select().count() == 1

    def test_finish_with_reported_values(self, client, headers):
        response = client.post(
            "/api/sessions/offline-1/finish",
            json={"distance_meters": 2000, "duration_seconds": 160, "date": "2024-06-01"},
            headers=headers,
        )
        body = response.get_json()
        assert response.status_code == 200
        assert body["is_flagged"]
        assert body["daily_progress"]["date"] == "2024-06-01"

    def test_finish_empty_session_rejected(self, client, headers, web_clock):
        session_id = start(client, headers)
        web_clock.advance(600)
        response = client.post(f"/api/sessions/{session_id}/finish", headers=headers)
        assert response.status_code == 400
        assert response.get_json()["error"] == "DISTANCE_VIOLATION"
        assert Run.select().count() == 0

    def test_finish_unknown_session_without_values(self, client, headers):
        response = client.post("/api/sessions/nope/finish", headers=headers)
        assert response.status_code == 404

    def test_finish_bad_reported_value(self, client, headers):
        session_id = start(client, headers)
        response = client.post(
            f"/api/sessions/{session_id}/finish", json={"distance_meters": "far"}, headers=headers
        )
        assert response.status_code == 400
        # the session is still live
        assert client.get(f"/api/sessions/{session_id}", headers=headers).status_code == 200

    def test_retry_after_persistence_failure(self, client, headers, web_clock, monkeypatch):
        from peewee import OperationalError

        from runledger.achievements import AchievementEngine

        session_id = start(client, headers)
        run_track(client, headers, web_clock, session_id, 3000)

        def broken(self, owner_id, facts):
            raise OperationalError("database is locked")

        with monkeypatch.context() as m:
            m.setattr(AchievementEngine, "evaluate", broken)
            response = client.post(f"/api/sessions/{session_id}/finish", headers=headers)
        assert response.status_code == 500
        assert response.get_json()["error"] == "PersistenceFailure"
        assert response.get_json()["step"] == "achievements"
        assert Run.select().count() == 0

        response = client.post(f"/api/sessions/{session_id}/finish", headers=headers)
        assert response.status_code == 200
        body = response.get_json()
        assert not body["replayed"]
        assert "First Steps" in body["unlocked_achievements"]
        run = Run.get(Run.session_id == session_id)
        assert run.distance_meters == pytest.approx(3000, abs=1)
        # settled sessions leave the registry
        assert client.get(f"/api/sessions/{session_id}", headers=headers).status_code == 404

    def test_owner_can_start_again_while_finish_is_pending(self, client, headers, web_clock, monkeypatch):
        from runledger.errors import PersistenceError

        session_id = start(client, headers)
        run_track(client, headers, web_clock, session_id, 1000)

        def broken(request, config=None, **kwargs):
            raise PersistenceError("run", "disk full")

        monkeypatch.setattr("routes.sessions.finish_session", broken)
        assert client.post(f"/api/sessions/{session_id}/finish", headers=headers).status_code == 500
        assert start(client, headers) != session_id

    def test_other_owner_cannot_finish_live_session(self, client, headers, web_clock):
        session_id = start(client, headers)
        run_track(client, headers, web_clock, session_id, 1000)
        response = client.post(
            f"/api/sessions/{session_id}/finish",
            json={"distance_meters": 2000, "duration_seconds": 900},
            headers={"X-Owner-Id": "mallory"},
        )
        assert response.status_code == 404
        assert Run.select().count() == 0
        assert FinishReceipt.select().count() == 0

        response = client.post(f"/api/sessions/{session_id}/finish", headers=headers)
        assert response.status_code == 200
        assert Run.get(Run.session_id == session_id).owner_id == "alice"
