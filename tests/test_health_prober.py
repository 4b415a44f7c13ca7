from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from shipyard_monitor.schemas.monitoring import HealthStatus, MonitoringConfig
from shipyard_monitor.services.apps_service import get_or_create_app
from shipyard_monitor.services.health_prober import probe_app


def _now() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
def web(state, inspector):
    inspector.add_app("web", address="10.0.0.7")
    return get_or_create_app(state, "web")


def test_probe_2xx_is_healthy(state, mongo_db, web, probe_routes):
    probe_routes.outcomes["10.0.0.7"] = 204

    result = probe_app(state, web, MonitoringConfig(app_id=web["id"], health_check_path="/healthz"))

    assert result.status == HealthStatus.healthy
    assert result.status_code == 204
    assert result.error_message is None
    assert str(probe_routes.requests[0].url) == "http://10.0.0.7:8080/healthz"

    docs = list(mongo_db["health_checks"].find({"appId": web["id"]}))
    assert len(docs) == 1
    assert docs[0]["status"] == "healthy"
    assert docs[0]["endpoint"] == "/healthz"
    assert docs[0]["method"] == "GET"
    assert docs[0]["responseTimeMs"] >= 0


def test_probe_non_2xx_is_unhealthy(state, web, probe_routes):
    probe_routes.outcomes["10.0.0.7"] = 503

    result = probe_app(state, web, MonitoringConfig(app_id=web["id"]))

    assert result.status == HealthStatus.unhealthy
    assert result.status_code == 503


def test_probe_connection_error_is_error(state, web):
    result = probe_app(state, web, MonitoringConfig(app_id=web["id"]))

    assert result.status == HealthStatus.error
    assert result.status_code is None
    assert "connection refused" in result.error_message


def test_probe_timeout_is_recorded_as_timeout(state, mongo_db, web, probe_routes):
    probe_routes.outcomes["10.0.0.7"] = httpx.ReadTimeout("timed out")

    result = probe_app(state, web, MonitoringConfig(app_id=web["id"], health_check_timeout=1))

    assert result.status == HealthStatus.timeout
    assert mongo_db["health_checks"].find_one({"appId": web["id"]})["status"] == "timeout"


def test_probe_service_lookup_failure_is_recorded(state, mongo_db, inspector):
    app = get_or_create_app(state, "no-service")

    result = probe_app(state, app, MonitoringConfig(app_id=app["id"]))

    assert result.status == HealthStatus.error
    assert result.error_message.startswith("service lookup failed:")
    assert mongo_db["health_checks"].count_documents({"appId": app["id"]}) == 1


def test_probe_disabled_writes_nothing(state, mongo_db, web, probe_routes):
    probe_routes.outcomes["10.0.0.7"] = 200

    assert probe_app(state, web, MonitoringConfig(app_id=web["id"], enabled=False)) is None
    assert mongo_db["health_checks"].count_documents({}) == 0
    assert probe_routes.requests == []


def test_probe_prunes_old_results(state, mongo_db, web, probe_routes):
    probe_routes.outcomes["10.0.0.7"] = 200
    mongo_db["health_checks"].insert_one(
        {"appId": web["id"], "endpoint": "/health", "status": "healthy", "checkedAt": _now() - timedelta(days=8)}
    )

    probe_app(state, web, MonitoringConfig(app_id=web["id"]))

    assert mongo_db["health_checks"].count_documents({}) == 1


@pytest.mark.anyio
async def test_health_check_history_and_summary(async_client: httpx.AsyncClient, state, web, probe_routes):
    cfg = MonitoringConfig(app_id=web["id"])
    probe_routes.outcomes["10.0.0.7"] = 200
    probe_app(state, web, cfg)
    probe_app(state, web, cfg)
    probe_routes.outcomes["10.0.0.7"] = 500
    probe_app(state, web, cfg)

    res = await async_client.get("/api/health-checks/web")
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 3
    assert sorted(i["status"] for i in body["items"]) == ["healthy", "healthy", "unhealthy"]

    res = await async_client.get("/api/health-checks/web/summary")
    assert res.status_code == 200
    summary = res.json()
    assert summary["app_name"] == "web"
    assert summary["healthy_checks"] == 2
    assert summary["unhealthy_checks"] == 1
    assert summary["avg_response_time_ms"] is not None
    assert summary["last_check"] is not None
