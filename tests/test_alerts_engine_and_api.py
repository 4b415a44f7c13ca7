from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from shipyard_monitor.k8s.inspector import PodUsage

from shipyard_monitor.schemas.common import Severity
from shipyard_monitor.schemas.monitoring import MonitoringConfig
from shipyard_monitor.services.alerts_engine import (
    cpu_severity,
    evaluate_app,
    resolve_active_alert,
    upsert_active_alert,
)
from shipyard_monitor.services.apps_service import get_or_create_app
from shipyard_monitor.services.collector import run_collection
from shipyard_monitor.services.metrics_service import record_metric

MB = 1024 * 1024


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _active(mongo_db, app_id: str, alert_type: str):
    return list(mongo_db["alerts"].find({"appId": app_id, "type": alert_type, "status": "active"}))


def test_cpu_severity_boundary_is_warning(state):
    settings = state.config.engine
    assert cpu_severity(90.0, 80.0, settings) == Severity.warning
    # 960 millicores is exactly threshold * 1.2 for an 80% threshold
    assert cpu_severity(960 / 1000 * 100, 80.0, settings) == Severity.warning
    assert cpu_severity(96.1, 80.0, settings) == Severity.critical


def test_upsert_keeps_one_active_alert_with_stable_identity(state, mongo_db):
    app = get_or_create_app(state, "web")
    t0 = _now() - timedelta(minutes=5)

    assert upsert_active_alert(state, app["id"], "cpu_high", 80.0, 90.0, Severity.warning, "first", now=t0) is True
    assert upsert_active_alert(state, app["id"], "cpu_high", 80.0, 91.0, Severity.warning, "second") is False
    assert upsert_active_alert(state, app["id"], "cpu_high", 80.0, 100.0, Severity.critical, "third") is False

    docs = _active(mongo_db, app["id"], "cpu_high")
    assert len(docs) == 1
    assert docs[0]["currentValue"] == 100.0
    assert docs[0]["severity"] == "critical"
    assert docs[0]["message"] == "third"
    # createdAt is the first raise, not the latest update (mongomock keeps ms precision)
    assert abs(docs[0]["createdAt"].replace(tzinfo=timezone.utc) - t0) < timedelta(milliseconds=1)


def test_resolve_without_active_alert_is_noop(state, mongo_db):
    app = get_or_create_app(state, "web")
    assert resolve_active_alert(state, app["id"], "cpu_high") == 0
    assert mongo_db["alerts"].count_documents({}) == 0


def _seed_duplicate_active(mongo_db, app_id: str, alert_type: str = "cpu_high") -> list:
    """Two active rows for one (app, type), as left by a store that predates the unique index."""
    mongo_db["alerts"].drop_index("uniq_alerts_active_app_type")
    base = _now() - timedelta(minutes=10)
    ids = []
    for i in range(2):
        res = mongo_db["alerts"].insert_one(
            {
                "appId": app_id,
                "type": alert_type,
                "threshold": 80.0,
                "currentValue": 90.0,
                "severity": "warning",
                "status": "active",
                "message": "dup",
                "createdAt": base + timedelta(minutes=i),
            }
        )
        ids.append(res.inserted_id)
    return ids


def test_unique_index_rejects_second_active_alert(state, mongo_db):
    app = get_or_create_app(state, "web")
    doc = {"appId": app["id"], "type": "cpu_high", "status": "active", "createdAt": _now()}
    mongo_db["alerts"].insert_one(dict(doc))

    with pytest.raises(DuplicateKeyError):
        mongo_db["alerts"].insert_one(dict(doc))

    # resolved history is not constrained
    mongo_db["alerts"].insert_one(dict(doc, status="resolved"))
    mongo_db["alerts"].insert_one(dict(doc, status="resolved"))
    assert mongo_db["alerts"].count_documents({"appId": app["id"]}) == 3


def test_breach_converges_duplicate_active_alerts(state, mongo_db):
    app = get_or_create_app(state, "web")
    oldest, newer = _seed_duplicate_active(mongo_db, app["id"])
    cfg = MonitoringConfig(app_id=app["id"])

    for _ in range(2):
        record_metric(state, app["id"], "cpu", 900.0, "millicores", "web-0")
        evaluate_app(state, app, cfg)
        active = _active(mongo_db, app["id"], "cpu_high")
        assert len(active) == 1
        assert active[0]["_id"] == oldest

    dup = mongo_db["alerts"].find_one({"_id": newer})
    assert dup["status"] == "resolved"
    assert dup["resolvedAt"] is not None


def test_concurrent_insert_falls_back_to_update(state, mongo_db, monkeypatch: pytest.MonkeyPatch):
    app = get_or_create_app(state, "web")
    real = state.mongo.collections()
    winner = {
        "appId": app["id"],
        "type": "cpu_high",
        "threshold": 80.0,
        "currentValue": 85.0,
        "severity": "warning",
        "status": "active",
        "message": "other cycle",
        "createdAt": _now(),
    }

    class RacingAlerts:
        """Another cycle inserts its active alert between this cycle's lookup and insert."""

        def __init__(self, alerts):
            self._alerts = alerts
            self._raced = False

        def find_one_and_update(self, *args, **kwargs):
            if not self._raced:
                self._raced = True
                self._alerts.insert_one(dict(winner))
                return None
            return self._alerts.find_one_and_update(*args, **kwargs)

        def __getattr__(self, name):
            return getattr(self._alerts, name)

    racing = dataclasses.replace(real, alerts=RacingAlerts(real.alerts))
    monkeypatch.setattr(state.mongo, "collections", lambda: racing)

    created = upsert_active_alert(state, app["id"], "cpu_high", 80.0, 92.0, Severity.warning, "this cycle")

    assert created is False
    active = _active(mongo_db, app["id"], "cpu_high")
    assert len(active) == 1
    assert active[0]["currentValue"] == 92.0
    assert active[0]["message"] == "this cycle"


def test_resolve_converges_duplicate_active_alerts(state, mongo_db):
    app = get_or_create_app(state, "web")
    _seed_duplicate_active(mongo_db, app["id"])
    assert resolve_active_alert(state, app["id"], "cpu_high") == 2
    docs = list(mongo_db["alerts"].find({"appId": app["id"]}))
    assert {d["status"] for d in docs} == {"resolved"}
    assert all(d["resolvedAt"] is not None for d in docs)


def test_evaluate_uses_latest_point_in_window(state, mongo_db):
    app = get_or_create_app(state, "web")
    now = _now()
    # Older high sample, newer low sample: the latest one wins, no averaging.
    record_metric(state, app["id"], "cpu", 950.0, "millicores", "web-0", ts=now - timedelta(seconds=120))
    record_metric(state, app["id"], "cpu", 500.0, "millicores", "web-0", ts=now - timedelta(seconds=30))

    transitions = evaluate_app(state, app, MonitoringConfig(app_id=app["id"]), now=now)

    cpu = [t for t in transitions if t.alert_type == "cpu_high"][0]
    assert cpu.action == "clear"
    assert cpu.value == pytest.approx(50.0)
    assert mongo_db["alerts"].count_documents({}) == 0


def test_evaluate_same_timestamp_uses_first_pod_written(state, mongo_db):
    app = get_or_create_app(state, "web")
    now = _now()
    ts = now - timedelta(seconds=5)
    record_metric(state, app["id"], "cpu", 900.0, "millicores", "web-0", ts=ts)
    record_metric(state, app["id"], "cpu", 100.0, "millicores", "web-1", ts=ts)

    transitions = evaluate_app(state, app, MonitoringConfig(app_id=app["id"]), now=now)

    assert [(t.action, t.value) for t in transitions] == [("raised", pytest.approx(90.0))]


def test_multi_pod_collection_alerts_on_first_pod(state, mongo_db, inspector):
    inspector.add_app("web", replicas=2)
    inspector.usage["web"] = [
        PodUsage(name="web-0", cpu_millicores=900.0, memory_bytes=100 * MB),
        PodUsage(name="web-1", cpu_millicores=100.0, memory_bytes=100 * MB),
    ]
    app = get_or_create_app(state, "web")

    run_collection(state)

    assert mongo_db["metrics"].count_documents({"appId": app["id"], "kind": "cpu"}) == 2
    active = _active(mongo_db, app["id"], "cpu_high")
    assert len(active) == 1
    assert active[0]["currentValue"] == pytest.approx(90.0)


def test_evaluate_skips_kinds_without_recent_points(state, mongo_db):
    app = get_or_create_app(state, "web")
    now = _now()
    upsert_active_alert(state, app["id"], "cpu_high", 80.0, 90.0, Severity.warning, "old", now=now - timedelta(hours=1))
    # Outside the 300s window: the rule is skipped and the active alert is left alone.
    record_metric(state, app["id"], "cpu", 100.0, "millicores", ts=now - timedelta(minutes=10))

    transitions = evaluate_app(state, app, MonitoringConfig(app_id=app["id"]), now=now)

    assert transitions == []
    assert len(_active(mongo_db, app["id"], "cpu_high")) == 1


def test_evaluate_window_includes_its_start(state, mongo_db):
    app = get_or_create_app(state, "web")
    now = _now().replace(microsecond=0)
    window = timedelta(seconds=state.config.engine.alert_window_seconds)
    record_metric(state, app["id"], "cpu", 900.0, "millicores", "web-0", ts=now - window)

    transitions = evaluate_app(state, app, MonitoringConfig(app_id=app["id"]), now=now)

    assert [t.action for t in transitions] == ["raised"]


def test_evaluate_at_threshold_does_not_fire(state, mongo_db):
    app = get_or_create_app(state, "web")
    now = _now()
    record_metric(state, app["id"], "cpu", 800.0, "millicores", ts=now - timedelta(seconds=5))

    transitions = evaluate_app(state, app, MonitoringConfig(app_id=app["id"]), now=now)

    assert [t.action for t in transitions] == ["clear"]
    assert mongo_db["alerts"].count_documents({}) == 0


def test_memory_rule_uses_fixed_checkpoint(state, mongo_db):
    app = get_or_create_app(state, "web")
    now = _now()
    # memory_threshold (percent) is not what the rule compares against
    cfg = MonitoringConfig(app_id=app["id"], memory_threshold=1.0)
    record_metric(state, app["id"], "memory", 400 * MB, "bytes", ts=now - timedelta(seconds=5))
    assert [t.action for t in evaluate_app(state, app, cfg, now=now)] == ["clear"]

    record_metric(state, app["id"], "memory", 600 * MB, "bytes", ts=now - timedelta(seconds=1))
    transitions = evaluate_app(state, app, cfg, now=now)

    assert [t.action for t in transitions] == ["raised"]
    docs = _active(mongo_db, app["id"], "memory_high")
    assert len(docs) == 1
    assert docs[0]["threshold"] == 500.0
    assert docs[0]["severity"] == "warning"
    assert docs[0]["message"] == "Memory usage 600.0MB exceeds threshold 500.0MB"


def test_cpu_alert_lifecycle_across_collection_cycles(state, mongo_db, inspector):
    inspector.add_app("web", cpu_millicores=900)
    app = get_or_create_app(state, "web")

    run_collection(state)
    first = _active(mongo_db, app["id"], "cpu_high")
    assert len(first) == 1
    assert first[0]["severity"] == "warning"
    assert first[0]["currentValue"] == pytest.approx(90.0)
    assert first[0]["message"] == "CPU usage 90.0% exceeds threshold 80.0%"

    inspector.set_usage("web", cpu_millicores=1000)
    run_collection(state)
    second = _active(mongo_db, app["id"], "cpu_high")
    assert len(second) == 1
    assert second[0]["_id"] == first[0]["_id"]
    assert second[0]["createdAt"] == first[0]["createdAt"]
    assert second[0]["severity"] == "critical"
    assert second[0]["currentValue"] == pytest.approx(100.0)

    inspector.set_usage("web", cpu_millicores=700)
    run_collection(state)
    assert _active(mongo_db, app["id"], "cpu_high") == []
    resolved = mongo_db["alerts"].find_one({"_id": first[0]["_id"]})
    assert resolved["status"] == "resolved"
    assert resolved["resolvedAt"] is not None


@pytest.mark.anyio
async def test_alerts_api_list_count_resolve_acknowledge(async_client: httpx.AsyncClient, state):
    web = get_or_create_app(state, "web")
    api = get_or_create_app(state, "api")
    upsert_active_alert(state, web["id"], "cpu_high", 80.0, 90.0, Severity.warning, "warn")
    upsert_active_alert(state, api["id"], "cpu_high", 80.0, 120.0, Severity.critical, "crit")
    upsert_active_alert(state, web["id"], "memory_high", 500.0, 600.0, Severity.warning, "mem")

    res = await async_client.get("/api/alerts", params={"status": "active"})
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 3
    assert body["items"][0]["severity"] == "critical"
    assert body["items"][0]["app_name"] == "api"

    res = await async_client.get("/api/alerts", params={"app": "web"})
    assert {a["type"] for a in res.json()["items"]} == {"cpu_high", "memory_high"}

    res = await async_client.get("/api/alerts/count")
    assert res.json() == {"total_active": 3, "by_app": {"web": 2, "api": 1}}

    res = await async_client.get("/api/alerts/count", params={"app": "api"})
    assert res.json() == {"total_active": 3, "by_app": {"api": 1}}

    alert_id = body["items"][0]["id"]
    res = await async_client.post(f"/api/alerts/{alert_id}/acknowledge")
    assert res.status_code == 200
    acked_at = res.json()["acknowledged_at"]
    assert acked_at is not None
    res = await async_client.post(f"/api/alerts/{alert_id}/acknowledge")
    assert res.json()["acknowledged_at"] == acked_at

    res = await async_client.post(f"/api/alerts/{alert_id}/resolve")
    assert res.status_code == 200
    resolved = res.json()
    assert resolved["status"] == "resolved"
    assert resolved["resolved_at"] is not None

    # resolving twice keeps the first resolution
    res = await async_client.post(f"/api/alerts/{alert_id}/resolve")
    assert res.json()["resolved_at"] == resolved["resolved_at"]

    res = await async_client.get("/api/alerts/count")
    assert res.json()["total_active"] == 2


@pytest.mark.anyio
async def test_alerts_api_not_found(async_client: httpx.AsyncClient):
    res = await async_client.get("/api/alerts/not-an-object-id")
    assert res.status_code == 404
    assert res.json()["detail"] == "alert not found"

    res = await async_client.post(f"/api/alerts/{ObjectId()}/resolve")
    assert res.status_code == 404

    res = await async_client.get("/api/alerts", params={"app": "ghost"})
    assert res.status_code == 404
