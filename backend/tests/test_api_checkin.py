from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import auth_headers, make_code, make_user
from portal.api import timeclock as timeclock_api
from portal.models.checkin import CheckinLog
from portal.models.timeclock import TimeEntry


@pytest.fixture
def kiosk(db, manager):
    return auth_headers(manager)


@pytest.fixture
def code(db, worker):
    return make_code(db, worker, "JD1234")


def _entries(db, worker):
    db.expire_all()
    return (
        db.query(TimeEntry)
        .filter(TimeEntry.user_id == worker.id)
        .order_by(TimeEntry.timestamp.asc(), TimeEntry.id.asc())
        .all()
    )


class TestAuth:
    def test_login_and_me(self, client, db):
        make_user(db, "kiosk1", role="manager")

        response = client.post("/api/auth/token", data={"username": "kiosk1", "password": "password123"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["username"] == "kiosk1"

    def test_bad_password(self, client, db):
        make_user(db, "kiosk2")
        response = client.post("/api/auth/token", data={"username": "kiosk2", "password": "nope"})
        assert response.status_code == 401

    def test_check_in_requires_auth(self, client):
        response = client.post("/api/check-in/validate", json={"code": "JD1234"})
        assert response.status_code == 401


class TestValidate:
    def test_known_code(self, client, kiosk, code, worker):
        response = client.post("/api/check-in/validate", json={"code": "jd1234"}, headers=kiosk)

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert body["name"] == "Jane Doe"
        assert body["worker_id"] == worker.id
        assert body["code_id"] == code.id
        assert body["status"] == "not_clocked_in"
        assert body["clocked_in_at"] is None

    def test_unknown_code(self, client, kiosk):
        response = client.post("/api/check-in/validate", json={"code": "ZZ9999"}, headers=kiosk)
        assert response.status_code == 404
        assert response.json()["detail"] == "Invalid or expired code"

    def test_malformed_code(self, client, kiosk):
        response = client.post("/api/check-in/validate", json={"code": "hello"}, headers=kiosk)
        assert response.status_code == 400


class TestAction:
    def test_clock_in_then_duplicate(self, client, kiosk, code, worker, db):
        first = client.post("/api/check-in/action", json={"code": "JD1234", "action": "clock_in"}, headers=kiosk)

        assert first.status_code == 201
        body = first.json()
        assert body["success"] is True
        assert body["action"] == "clock_in"
        assert body["state"] == "in"
        assert body["auto_ended_meal"] is False
        assert db.query(CheckinLog).filter(CheckinLog.user_id == worker.id).count() == 1

        second = client.post("/api/check-in/action", json={"code": "JD1234", "action": "clock_in"}, headers=kiosk)

        assert second.status_code == 409
        assert second.json()["detail"] == {
            "message": "Worker is already clocked in",
            "kind": "already-in-state",
        }
        assert len(_entries(db, worker)) == 1

    def test_failed_checkin_log_rolls_back_the_clock_in(self, client, kiosk, code, worker, db, monkeypatch):
        from portal.main import app

        def unavailable(code, action):
            def rows(entries):
                raise RuntimeError("checkin_logs unavailable")
            return rows

        monkeypatch.setattr(timeclock_api, "_checkin_log", unavailable)
        with TestClient(app, raise_server_exceptions=False) as failing_client:
            first = failing_client.post(
                "/api/check-in/action", json={"code": "JD1234", "action": "clock_in"}, headers=kiosk,
            )

        assert first.status_code == 500
        assert _entries(db, worker) == []
        assert db.query(CheckinLog).count() == 0

        monkeypatch.undo()
        retry = client.post("/api/check-in/action", json={"code": "JD1234", "action": "clock_in"}, headers=kiosk)

        assert retry.status_code == 201
        assert [e.action for e in _entries(db, worker)] == ["clock_in"]
        log = db.query(CheckinLog).one()
        assert log.code_id == code.id
        assert log.user_id == worker.id

    def test_meal_start_while_out(self, client, kiosk, code, worker, db):
        response = client.post("/api/check-in/action", json={"code": "JD1234", "action": "meal_start"}, headers=kiosk)

        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "not-in-required-state"
        assert _entries(db, worker) == []

    def test_unknown_action_is_rejected_at_the_boundary(self, client, kiosk, code):
        response = client.post("/api/check-in/action", json={"code": "JD1234", "action": "nap"}, headers=kiosk)
        assert response.status_code == 422

    def test_signed_clock_out_from_meal(self, client, kiosk, code, worker, db):
        start = datetime.utcnow() - timedelta(hours=5)
        for action, offset in (("clock_in", 0), ("meal_start", 3)):
            response = client.post(
                "/api/check-in/action",
                json={"code": "JD1234", "action": action, "timestamp": (start + timedelta(hours=offset)).isoformat()},
                headers=kiosk,
            )
            assert response.status_code == 201

        response = client.post(
            "/api/check-in/action",
            json={"code": "JD1234", "action": "clock_out", "signature": "Jane Doe"},
            headers=kiosk,
        )

        assert response.status_code == 201
        assert response.json()["auto_ended_meal"] is True
        assert response.json()["state"] == "out"
        entries = _entries(db, worker)
        assert [e.action for e in entries] == ["clock_in", "meal_start", "meal_end", "clock_out"]
        assert entries[2].timestamp == entries[3].timestamp
        assert entries[3].signature == "Jane Doe"
        assert entries[3].notes == "Signed clock-out via kiosk"
        assert db.query(CheckinLog).count() == 1

    def test_future_timestamp(self, client, kiosk, code):
        future = (datetime.utcnow() + timedelta(hours=2)).isoformat() + "Z"
        response = client.post(
            "/api/check-in/action",
            json={"code": "JD1234", "action": "clock_in", "timestamp": future},
            headers=kiosk,
        )
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "invalid-timestamp"

    def test_code_without_worker(self, client, kiosk, db):
        make_code(db, None, "KK0001")
        response = client.post("/api/check-in/action", json={"code": "KK0001", "action": "clock_in"}, headers=kiosk)
        assert response.status_code == 400


class TestSync:
    def _queued(self, id, action, at, code="JD1234"):
        return {"id": id, "code": code, "action": action, "timestamp": at.isoformat() + "Z"}

    def test_replays_in_timestamp_order_with_validation(self, client, kiosk, code, worker, db):
        start = datetime.utcnow() - timedelta(hours=6)
        payload = {"actions": [
            self._queued("c", "clock_out", start + timedelta(hours=4)),
            self._queued("a", "clock_in", start),
            self._queued("dup", "clock_in", start + timedelta(hours=1)),
            self._queued("b", "meal_start", start + timedelta(hours=2)),
            self._queued("bad", "nap", start + timedelta(hours=3)),
            self._queued("ts", "meal_end", start, code="JD1234") | {"timestamp": "yesterday"},
        ]}

        response = client.post("/api/check-in/sync", json=payload, headers=kiosk)

        assert response.status_code == 200
        body = response.json()
        assert body["synced"] == 3
        assert body["failed"] == 3
        by_id = {r["id"]: r for r in body["results"]}
        assert by_id["a"]["success"] and by_id["b"]["success"] and by_id["c"]["success"]
        assert by_id["dup"]["kind"] == "already-in-state"
        assert by_id["bad"]["kind"] == "invalid-action"
        assert by_id["ts"]["kind"] == "invalid-timestamp"

        entries = _entries(db, worker)
        assert [e.action for e in entries] == ["clock_in", "meal_start", "meal_end", "clock_out"]
        assert all("Offline kiosk sync" in e.notes for e in entries if e.action != "meal_end")

    def test_unknown_code_is_reported_per_item(self, client, kiosk, code):
        payload = {"actions": [self._queued("x", "clock_in", datetime.utcnow() - timedelta(minutes=5), code="ZZ0000")]}
        body = client.post("/api/check-in/sync", json=payload, headers=kiosk).json()
        assert body["failed"] == 1
        assert body["results"][0]["error"] == "Invalid or expired code"
        assert body["results"][0]["kind"] == "invalid-code"

    def test_empty_queue(self, client, kiosk):
        response = client.post("/api/check-in/sync", json={"actions": []}, headers=kiosk)
        assert response.status_code == 400


class TestReadViews:
    def test_shift_summary(self, client, kiosk, code, worker):
        assert client.get(f"/api/check-in/shift-summary?worker_id={worker.id}", headers=kiosk).json() == {"active": False}

        client.post("/api/check-in/action", json={"code": "JD1234", "action": "clock_in"}, headers=kiosk)
        summary = client.get(f"/api/check-in/shift-summary?worker_id={worker.id}", headers=kiosk).json()

        assert summary["active"] is True
        assert summary["meal_ms"] == 0
        assert summary["on_meal"] is False

    def test_recent_without_event(self, client, kiosk):
        response = client.get("/api/check-in/recent", headers=kiosk)
        assert response.status_code == 200
        assert response.json() == {"event": None, "entries": [], "checked_in_users": []}
