"""Tests for the health, status and circuit endpoints."""

from fastapi.testclient import TestClient

from src.api.app import create_app


class TestHealth:
    """GET /health."""

    def test_healthy(self, make_client):
        response = make_client(db_healthy=True, running=True).get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["healthy"] is True
        assert body["status"] == "healthy"
        assert body["components"]["database"]["status"] == "healthy"
        assert body["components"]["monitor"]["status"] == "healthy"
        assert body["monitor"]["sources_monitored"] == 2

    def test_degraded_when_monitor_stopped(self, make_client):
        body = make_client(db_healthy=True, running=False).get("/health").json()

        assert body["healthy"] is False
        assert body["status"] == "degraded"

    def test_unhealthy_when_everything_is_down(self, make_client):
        body = make_client(db_healthy=False, running=False).get("/health").json()
        assert body["status"] == "unhealthy"

    def test_missing_database_counts_as_down(self, make_client):
        body = make_client(db_healthy=None, running=True).get("/health").json()

        assert body["status"] == "degraded"
        assert body["components"]["database"]["details"] == {"error": "not configured"}

    def test_no_monitor_registered(self):
        client = TestClient(create_app())
        assert client.get("/health").status_code == 503


class TestStatus:
    """GET /status."""

    def test_status_snapshot(self, make_client, api_breaker):
        for _ in range(3):
            api_breaker.record_failure("someprofile")

        body = make_client(running=True).get("/status").json()

        assert body["running"] is True
        assert body["check_interval_minutes"] == 5
        assert body["sources_monitored"] == 2
        assert body["active_hours"]["configured"] is False
        assert body["circuit_breaker_states"] == [{
            "key": "someprofile",
            "state": "open",
            "failures": 3,
            "remaining_reset_seconds": 60.0,
        }]
        assert body["metrics"]["fetching"]["total_attempts"] == 0


class TestCircuitReset:
    """POST /circuits/... overrides."""

    def test_reset_one(self, make_client, api_breaker):
        for key in ("someprofile", "otherprofile"):
            for _ in range(3):
                api_breaker.record_failure(key)

        response = make_client().post("/circuits/someprofile/reset")

        assert response.status_code == 200
        body = response.json()
        assert body["reset"] == ["someprofile"]
        assert [c["key"] for c in body["circuits"]] == ["otherprofile"]

    def test_reset_all(self, make_client, api_breaker):
        for _ in range(3):
            api_breaker.record_failure("someprofile")

        body = make_client().post("/circuits/reset").json()

        assert body == {"reset": ["*"], "circuits": []}


def test_root_lists_endpoints():
    body = TestClient(create_app()).get("/").json()
    assert "/health" in body["available_endpoints"]
