from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import ReturnDocument

from shipyard_monitor.schemas.alerts import AlertCountResponse, AlertOut, AlertsQuery, AlertStatus
from shipyard_monitor.schemas.common import as_utc, utc_now
from shipyard_monitor.state import get_state

logger = logging.getLogger(__name__)


_SEVERITY_RANK = {"critical": 1, "warning": 2, "info": 3}


def _app_names(request: Request) -> Dict[str, str]:
    cols = get_state(request.app).mongo.collections()
    return {d["id"]: d["name"] for d in cols.apps.find({}, projection={"_id": 0, "id": 1, "name": 1})}


def _doc_to_out(doc: dict, app_names: Optional[Dict[str, str]] = None) -> AlertOut:
    return AlertOut(
        id=str(doc.get("_id")),
        app_id=doc["appId"],
        app_name=(app_names or {}).get(doc["appId"]),
        type=doc["type"],
        threshold=float(doc.get("threshold", 0.0)),
        current_value=float(doc.get("currentValue", 0.0)),
        severity=doc.get("severity", "warning"),
        status=doc.get("status", AlertStatus.active.value),
        message=doc.get("message", ""),
        created_at=as_utc(doc["createdAt"]),
        resolved_at=as_utc(doc.get("resolvedAt")),
        acknowledged_at=as_utc(doc.get("acknowledgedAt")),
    )


def _oid(alert_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(alert_id)
    except (InvalidId, TypeError):
        return None


def _alerts_query_from_filters(q: AlertsQuery) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if q.app_id:
        query["appId"] = q.app_id
    if q.status:
        query["status"] = q.status.value
    if q.severity:
        query["severity"] = q.severity.value
    if q.since:
        query["createdAt"] = {"$gte": q.since}
    return query


# PUBLIC_INTERFACE
def list_alerts(request: Request, filters: AlertsQuery) -> Tuple[List[AlertOut], int]:
    """
    List alerts with filters and pagination.

    Active-only listings are ordered critical first, then newest; everything else newest first.
    Returns (items, total_matching).
    """
    cols = get_state(request.app).mongo.collections()
    q = _alerts_query_from_filters(filters)
    names = _app_names(request)

    total = int(cols.alerts.count_documents(q))
    if filters.status == AlertStatus.active:
        docs = list(cols.alerts.find(q).sort("createdAt", -1))
        docs.sort(key=lambda d: _SEVERITY_RANK.get(d.get("severity"), 9))
        docs = docs[filters.offset : filters.offset + filters.limit]
    else:
        docs = list(cols.alerts.find(q).sort("createdAt", -1).skip(int(filters.offset)).limit(int(filters.limit)))
    return [_doc_to_out(d, names) for d in docs], total


# PUBLIC_INTERFACE
def get_alert(request: Request, alert_id: str) -> Optional[AlertOut]:
    """Fetch an alert by id; returns None if not found or id invalid."""
    oid = _oid(alert_id)
    if oid is None:
        return None
    doc = get_state(request.app).mongo.collections().alerts.find_one({"_id": oid})
    return _doc_to_out(doc, _app_names(request)) if doc else None


# PUBLIC_INTERFACE
def resolve_alert(request: Request, alert_id: str) -> Optional[AlertOut]:
    """
    Manually resolve an alert. Already-resolved alerts are returned unchanged.

    Returns None if not found/invalid id.
    """
    oid = _oid(alert_id)
    if oid is None:
        return None
    cols = get_state(request.app).mongo.collections()
    now = utc_now()
    doc = cols.alerts.find_one_and_update(
        {"_id": oid, "status": {"$ne": AlertStatus.resolved.value}},
        {"$set": {"status": AlertStatus.resolved.value, "resolvedAt": now, "updatedAt": now}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        doc = cols.alerts.find_one({"_id": oid})
    return _doc_to_out(doc, _app_names(request)) if doc else None


# PUBLIC_INTERFACE
def acknowledge_alert(request: Request, alert_id: str) -> Optional[AlertOut]:
    """Mark an alert as acknowledged (first acknowledgement wins). Returns None if not found/invalid id."""
    oid = _oid(alert_id)
    if oid is None:
        return None
    cols = get_state(request.app).mongo.collections()
    cols.alerts.update_one({"_id": oid, "acknowledgedAt": None}, {"$set": {"acknowledgedAt": utc_now()}})
    doc = cols.alerts.find_one({"_id": oid})
    return _doc_to_out(doc, _app_names(request)) if doc else None


# PUBLIC_INTERFACE
def count_active(request: Request, app_id: Optional[str] = None) -> AlertCountResponse:
    """Active alert counts, per application name and cluster-wide."""
    cols = get_state(request.app).mongo.collections()
    names = _app_names(request)

    match: Dict[str, Any] = {"status": AlertStatus.active.value}
    if app_id:
        match["appId"] = app_id

    by_app: Dict[str, int] = {}
    for row in cols.alerts.aggregate([{"$match": match}, {"$group": {"_id": "$appId", "count": {"$sum": 1}}}]):
        by_app[names.get(row["_id"], row["_id"])] = int(row["count"])

    total = int(cols.alerts.count_documents({"status": AlertStatus.active.value}))
    return AlertCountResponse(total_active=total, by_app=by_app)


# PUBLIC_INTERFACE
def active_count_for_app(request: Request, app_id: str) -> int:
    """Number of active alerts for one application."""
    cols = get_state(request.app).mongo.collections()
    return int(cols.alerts.count_documents({"appId": app_id, "status": AlertStatus.active.value}))
