import pytest
from fastapi.testclient import TestClient

from app.core import health as health_module
from app.main import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def _mock_env(monkeypatch):
    monkeypatch.setattr(health_module.settings, "environment", "test")
    yield


def _patch_checks(monkeypatch, *, db_status: str = "ok", redis_status: str = "ok") -> None:
    async def fake_db():
        return {"status": db_status} if db_status == "ok" else {"status": db_status, "error": "unreachable"}

    async def fake_redis():
        return {"status": redis_status} if redis_status == "ok" else {"status": redis_status, "error": "refused"}

    monkeypatch.setattr(health_module, "_check_db", fake_db)
    monkeypatch.setattr(health_module, "_check_redis", fake_redis)


def test_health_live_returns_ok() -> None:
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert "timestamp" in payload


def test_health_ready_ok(monkeypatch) -> None:
    _patch_checks(monkeypatch)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("ready") is True
    assert payload["environment"] == "test"
    assert payload["checks"]["database"]["status"] == "ok"
    assert payload["checks"]["notifications"]["status"] == "ok"


def test_health_ready_degraded(monkeypatch) -> None:
    _patch_checks(monkeypatch, db_status="error")

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "degraded"
    assert payload.get("ready") is False
    assert payload["checks"]["database"]["status"] == "error"


def test_redis_outage_degrades_readiness(monkeypatch) -> None:
    _patch_checks(monkeypatch, redis_status="error")

    payload = client.get("/api/v1/health").json()["data"]
    assert payload["ready"] is False
    assert payload["checks"]["notifications"]["error"] == "refused"


def test_status_summary(monkeypatch) -> None:
    _patch_checks(monkeypatch)

    response = client.get("/api/v1/status/summary")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("ready") is True
    assert payload.get("version") == health_module.APP_VERSION
    assert payload.get("service") == "lending-engine"


def test_request_id_is_echoed() -> None:
    response = client.get("/api/v1/health/live", headers={"X-Request-ID": "req-123"})
    assert response.headers.get("x-request-id") == "req-123"
