from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from fastapi import Request

from shipyard_monitor.schemas.common import as_utc, utc_now
from shipyard_monitor.schemas.monitoring import HealthCheckOut, HealthStatus, HealthSummaryOut
from shipyard_monitor.state import get_state


def doc_to_out(doc: dict) -> HealthCheckOut:
    return HealthCheckOut(
        app_id=doc["appId"],
        endpoint=doc.get("endpoint", ""),
        method=doc.get("method", "GET"),
        status=doc["status"],
        status_code=doc.get("statusCode"),
        response_time_ms=max(0, int(doc.get("responseTimeMs") or 0)),
        error_message=doc.get("errorMessage"),
        checked_at=as_utc(doc["checkedAt"]),
    )


# PUBLIC_INTERFACE
def list_health_checks(
    request: Request,
    app_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
) -> Tuple[List[HealthCheckOut], int]:
    """Health-check history of an app, newest first. Returns (items, total_matching)."""
    cols = get_state(request.app).mongo.collections()
    query: dict = {"appId": app_id}
    if start or end:
        checked: dict = {}
        if start:
            checked["$gte"] = start
        if end:
            checked["$lte"] = end
        query["checkedAt"] = checked

    total = int(cols.health_checks.count_documents(query))
    docs = list(
        cols.health_checks.find(query, projection={"_id": 0}).sort("checkedAt", -1).limit(max(1, min(limit, 1000)))
    )
    return [doc_to_out(d) for d in docs], total


# PUBLIC_INTERFACE
def latest_health_check(request: Request, app_id: str) -> Optional[HealthCheckOut]:
    cols = get_state(request.app).mongo.collections()
    doc = cols.health_checks.find_one({"appId": app_id}, projection={"_id": 0}, sort=[("checkedAt", -1)])
    return doc_to_out(doc) if doc else None


# PUBLIC_INTERFACE
def summarize(request: Request, app: dict, period: timedelta = timedelta(hours=1)) -> HealthSummaryOut:
    """Healthy vs. non-healthy counts and average response time over the period."""
    cols = get_state(request.app).mongo.collections()
    docs = list(
        cols.health_checks.find(
            {"appId": app["id"], "checkedAt": {"$gte": utc_now() - period}},
            projection={"_id": 0, "status": 1, "responseTimeMs": 1, "checkedAt": 1},
        )
    )
    healthy = sum(1 for d in docs if d.get("status") == HealthStatus.healthy.value)
    times = [float(d.get("responseTimeMs") or 0) for d in docs]
    return HealthSummaryOut(
        app_name=app["name"],
        healthy_checks=healthy,
        unhealthy_checks=len(docs) - healthy,
        avg_response_time_ms=(sum(times) / len(times)) if times else None,
        last_check=as_utc(max((d["checkedAt"] for d in docs), default=None)),
    )
