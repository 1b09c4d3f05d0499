import pytest
from fastapi.testclient import TestClient

from app.core import health as health_module
from app.core.limiter import limiter
from app.main import app

client = TestClient(app)


@pytest.fixture(autouse=True)
def _mock_env(monkeypatch):
    monkeypatch.setattr(health_module.settings, "environment", "test")
    yield


@pytest.fixture
def checks_ok(monkeypatch):
    async def ok():
        return {"status": "ok"}

    monkeypatch.setattr(health_module, "_check_db", ok)
    monkeypatch.setattr(health_module, "_check_redis", ok)


def test_health_live_returns_ok() -> None:
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert "timestamp" in payload


def test_health_ready_ok(checks_ok) -> None:
    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("ready") is True
    assert payload["checks"]["api"]["draft_store"] == "memory"


def test_health_ready_degraded(monkeypatch) -> None:
    async def bad_db():
        return {"status": "error", "error": "unreachable"}

    async def ok_redis():
        return {"status": "ok"}

    monkeypatch.setattr(health_module, "_check_db", bad_db)
    monkeypatch.setattr(health_module, "_check_redis", ok_redis)

    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "degraded"
    assert payload.get("ready") is False
    assert payload["checks"]["database"]["status"] == "error"


@pytest.mark.asyncio
async def test_redis_check_skipped_when_unused(monkeypatch) -> None:
    monkeypatch.setattr(health_module.settings, "draft_store_backend", "memory")
    monkeypatch.setattr(health_module.settings, "rate_limit_storage_uri", "memory://")

    assert await health_module._check_redis() == {"status": "ok", "detail": "not configured"}


def test_status_summary(checks_ok) -> None:
    response = client.get("/api/v1/status/summary")
    assert response.status_code == 200
    payload = response.json()["data"]
    assert payload.get("status") == "ok"
    assert payload.get("version") == health_module.APP_VERSION
    assert payload.get("applicant_steps") == 5
    assert payload.get("reminders_enabled") is bool(health_module.settings.cron_secret)


def test_health_routes_are_exempt_from_rate_limits() -> None:
    exempt = {route.rsplit(".", 1)[-1] for route in limiter._exempt_routes}

    assert {"health_live", "health_ready", "status_summary"} <= exempt


def test_legacy_health_route_is_gone() -> None:
    assert client.get("/api/v1/health").status_code == 404
