"""
Tests for the progression and health HTTP endpoints.

Run with: pytest test_api.py -v
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from routers.health import router as health_router
from routers.health import set_health_dependencies
from routers.progress import router as progress_router
from routers.progress import set_progression_service


@pytest.fixture
def client(progression, kv, remote):
    app = FastAPI()
    app.include_router(progress_router)
    app.include_router(health_router)
    set_progression_service(progression)
    set_health_dependencies(kv_store=kv, remote_ledger=remote)
    yield TestClient(app)
    set_progression_service(None)
    set_health_dependencies()


def game(**overrides):
    body = {
        "difficulty": "expert",
        "time_seconds": 300,
        "mistakes": 0,
        "hints_used": 0,
        "is_win": True,
    }
    body.update(overrides)
    return body


class TestProgressEndpoints:

    def test_preview(self, client):
        response = client.post("/api/progress/preview", json=game())
        assert response.status_code == 200
        assert response.json() == {"xp": 100}

    def test_record_guest_game(self, client):
        response = client.post("/api/progress/games", json=game(mistakes=1, difficulty="medium"))

        assert response.status_code == 200
        data = response.json()
        assert data["xp_earned"] == 40
        assert data["cloud_saved"] is False
        assert data["local_saved"] is True
        assert data["new_level"] == 1

    def test_sign_in_then_record(self, client, remote):
        client.post("/api/progress/games", json=game())

        response = client.post("/api/progress/identity", json={"user_id": "u1"})
        assert response.status_code == 200
        status = response.json()
        assert status["migrated"] is True
        assert status["migration_success"] is True
        assert status["games_played"] == 1

        response = client.post("/api/progress/games", json=game(user_id="u1"))
        assert response.json()["cloud_saved"] is True
        assert remote.totals("u1").games_played == 2

    def test_offline_record_then_flush(self, client, remote):
        client.post("/api/progress/identity", json={"user_id": "u1"})
        remote.offline = True
        response = client.post("/api/progress/games", json=game(user_id="u1", is_win=False))
        assert response.status_code == 200
        assert response.json()["cloud_saved"] is False

        assert client.get("/api/progress/status", params={"user_id": "u1"}).json()["pending"] == 1

        remote.offline = False
        response = client.post("/api/progress/flush", json={"user_id": "u1"})
        assert response.json() == {"synced": 1, "remaining": 0, "skipped_in_flight": False}

    @pytest.mark.parametrize("overrides", [
        {"difficulty": "easy"},
        {"mistakes": -1},
        {"time_seconds": -5},
        {"hints_used": "many"},
    ])
    def test_invalid_game_rejected(self, client, overrides):
        response = client.post("/api/progress/games", json=game(**overrides))
        assert response.status_code == 422

    def test_status_of_fresh_device(self, client):
        data = client.get("/api/progress/status").json()
        assert data["migrated"] is False
        assert data["pending"] == 0
        assert data["xp"] == 0
        assert data["level"]["title"] == "Beginner"
        assert data["level"]["next_level_xp"] == 150
        assert data["current_streak"] == 0
        assert data["longest_streak"] == 0

    def test_status_reports_streak_after_win(self, client):
        client.post("/api/progress/games", json=game())
        data = client.get("/api/progress/status").json()
        assert data["current_streak"] == 1
        assert data["longest_streak"] == 1

    def test_levels(self, client):
        levels = client.get("/api/progress/levels").json()
        assert levels[0] == {"level": 1, "xp": 0, "title": "Beginner"}
        assert levels[-1] == {"level": 100, "xp": 50000, "title": "Immortal"}

    def test_service_not_initialized(self):
        set_progression_service(None)
        app = FastAPI()
        app.include_router(progress_router)
        response = TestClient(app).get("/api/progress/status")
        assert response.status_code == 503


class TestHealthEndpoints:

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"

    def test_ready_without_remote_database(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["checks"]["storage"]["status"] == "ok"
        assert data["checks"]["remote"]["status"] == "not_configured"
        assert data["status"] == "degraded"

    def test_ready_without_storage(self, client):
        set_health_dependencies(kv_store=None, remote_ledger=None)
        assert client.get("/ready").status_code == 503
