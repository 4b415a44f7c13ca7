from __future__ import annotations

from datetime import timedelta

from fastapi import Request

from shipyard_monitor.schemas.alerts import AlertStatus
from shipyard_monitor.schemas.apps import AppStatusOut
from shipyard_monitor.schemas.common import Severity, as_utc, utc_now
from shipyard_monitor.schemas.monitoring import MetricKind
from shipyard_monitor.services import health_service
from shipyard_monitor.services.alerts_service import active_count_for_app
from shipyard_monitor.services.metrics_service import latest_per_kind, recent_points
from shipyard_monitor.state import get_state


def _replica_status(desired: int, ready: int) -> str:
    if desired > 0 and ready == desired:
        return "healthy"
    if ready > 0:
        return "degraded"
    return "failed"


# PUBLIC_INTERFACE
def get_app_status(request: Request, app: dict, lookback: timedelta = timedelta(hours=1)) -> AppStatusOut:
    """
    Derive an app's status from what the collector last persisted.

    Replica counts give healthy / degraded / failed (unknown without samples). Any active critical alert
    makes the app critical; other active alerts turn a healthy app into warning.
    """
    state = get_state(request.app)
    latest = latest_per_kind(recent_points(state, app["id"], utc_now() - lookback))

    desired_doc = latest.get(MetricKind.replicas_desired.value)
    ready_doc = latest.get(MetricKind.replicas_ready.value)
    replicas = None
    status = "unknown"
    if desired_doc is not None and ready_doc is not None:
        desired, ready = int(desired_doc["value"]), int(ready_doc["value"])
        replicas = f"{ready}/{desired}"
        status = _replica_status(desired, ready)

    active = active_count_for_app(request, app["id"])
    if active:
        critical = state.mongo.collections().alerts.count_documents(
            {"appId": app["id"], "status": AlertStatus.active.value, "severity": Severity.critical.value}
        )
        if critical:
            status = "critical"
        elif status == "healthy":
            status = "warning"

    return AppStatusOut(
        app_name=app["name"],
        status=status,
        replicas=replicas,
        active_alerts=active,
        health_check=health_service.latest_health_check(request, app["id"]),
        latest_metrics={kind: float(doc["value"]) for kind, doc in sorted(latest.items())},
        last_updated=as_utc(max((doc["ts"] for doc in latest.values()), default=None)),
    )
