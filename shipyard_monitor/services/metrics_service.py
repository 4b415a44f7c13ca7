from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from fastapi import Request
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from shipyard_monitor.schemas.common import as_utc, utc_now
from shipyard_monitor.schemas.metrics import LatestMetricsResponse, MetricHistoryResponse, MetricPointOut
from shipyard_monitor.services import retention
from shipyard_monitor.state import AppState, get_state

logger = logging.getLogger(__name__)


def _doc_to_point(doc: dict) -> MetricPointOut:
    return MetricPointOut(
        kind=doc["kind"],
        value=float(doc.get("value", 0.0)),
        unit=doc.get("unit"),
        pod_name=doc.get("podName"),
        ts=as_utc(doc["ts"]),
    )


# PUBLIC_INTERFACE
def record_metric(
    state: AppState,
    app_id: str,
    kind: str,
    value: float,
    unit: str,
    pod_name: Optional[str] = None,
    ts: Optional[datetime] = None,
) -> None:
    """Append one metric point, then prune metrics past the retention horizon."""
    cols = state.mongo.collections()
    cols.metrics.insert_one(
        {
            "appId": app_id,
            "kind": str(kind),
            "value": float(value),
            "unit": unit,
            "podName": pod_name,
            "ts": ts or utc_now(),
        }
    )
    try:
        retention.sweep(cols.metrics, "ts", timedelta(days=state.config.engine.metrics_retention_days))
    except PyMongoError:
        logger.exception("Metrics retention cleanup failed")


# PUBLIC_INTERFACE
def recent_points(state: AppState, app_id: str, since: datetime) -> List[dict]:
    """
    Metric points of an app with ts >= since, newest first.

    Points sharing a timestamp (one per pod in a sampling pass) keep insertion order, so the first pod
    written comes first.
    """
    cols = state.mongo.collections()
    return list(
        cols.metrics.find({"appId": app_id, "ts": {"$gte": since}}, projection={"appId": 0}).sort(
            [("ts", DESCENDING), ("_id", ASCENDING)]
        )
    )


# PUBLIC_INTERFACE
def latest_per_kind(points_newest_first: List[dict]) -> Dict[str, dict]:
    """Pick the newest point of every kind. No averaging: the latest sample wins."""
    latest: Dict[str, dict] = {}
    for doc in points_newest_first:
        latest.setdefault(doc["kind"], doc)
    return latest


def _compute_range(start: Optional[datetime], end: Optional[datetime]) -> Tuple[datetime, datetime]:
    end = end or utc_now()
    start = start or (end - timedelta(hours=1))
    if start > end:
        start, end = end, start
    return start, end


# PUBLIC_INTERFACE
def get_history(
    request: Request,
    app: dict,
    kind: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime],
    limit: int = 1000,
) -> MetricHistoryResponse:
    """Return metric points of an app in [start, end], optionally filtered by kind, oldest first."""
    start, end = _compute_range(start, end)
    cols = get_state(request.app).mongo.collections()

    query: dict = {"appId": app["id"], "ts": {"$gte": start, "$lte": end}}
    if kind:
        query["kind"] = kind

    docs = list(cols.metrics.find(query, projection={"_id": 0}).sort("ts", 1).limit(max(1, min(limit, 10000))))
    return MetricHistoryResponse(
        app_name=app["name"],
        kind=kind,
        start=start,
        end=end,
        points=[_doc_to_point(d) for d in docs],
    )


# PUBLIC_INTERFACE
def get_latest(request: Request, app: dict, lookback: timedelta = timedelta(hours=1)) -> LatestMetricsResponse:
    """Return the newest point per kind within the lookback."""
    state = get_state(request.app)
    latest = latest_per_kind(recent_points(state, app["id"], utc_now() - lookback))
    items = [_doc_to_point(latest[k]) for k in sorted(latest)]
    return LatestMetricsResponse(app_name=app["name"], items=items)
