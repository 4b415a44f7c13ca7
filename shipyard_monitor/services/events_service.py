from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from fastapi import Request
from pymongo.errors import PyMongoError

from shipyard_monitor.k8s.inspector import ClusterEvent
from shipyard_monitor.schemas.common import as_utc, utc_now
from shipyard_monitor.schemas.events import EventOut
from shipyard_monitor.services import retention
from shipyard_monitor.state import AppState, get_state

logger = logging.getLogger(__name__)


def _doc_to_out(doc: dict) -> EventOut:
    return EventOut(
        id=str(doc.get("_id")),
        app_id=doc.get("appId"),
        type=doc.get("type", "Normal"),
        reason=doc.get("reason", ""),
        message=doc.get("message", ""),
        object_kind=doc.get("objectKind"),
        object_name=doc.get("objectName"),
        first_timestamp=as_utc(doc.get("firstTimestamp")),
        last_timestamp=as_utc(doc.get("lastTimestamp")),
        count=max(1, int(doc.get("count") or 1)),
        created_at=as_utc(doc["createdAt"]),
    )


# PUBLIC_INTERFACE
def record_event(state: AppState, app_id: Optional[str], event: ClusterEvent) -> bool:
    """
    Store a workload event; app_id None marks a cluster-wide event.

    An event already stored for the same object, reason and first timestamp is refreshed
    (count, last timestamp, message) instead of duplicated. Returns True when a new document was inserted.
    """
    cols = state.mongo.collections()
    key = {
        "appId": app_id,
        "type": event.type,
        "reason": event.reason,
        "objectKind": event.object_kind,
        "objectName": event.object_name,
        "firstTimestamp": event.first_timestamp,
    }
    res = cols.events.update_one(
        key,
        {"$set": {"lastTimestamp": event.last_timestamp, "count": int(event.count), "message": event.message}},
    )
    if res.matched_count:
        return False

    doc = dict(key)
    doc.update(
        {
            "message": event.message,
            "lastTimestamp": event.last_timestamp,
            "count": int(event.count),
            "createdAt": utc_now(),
        }
    )
    cols.events.insert_one(doc)
    try:
        retention.sweep(cols.events, "createdAt", timedelta(days=state.config.engine.events_retention_days))
    except PyMongoError:
        logger.exception("Events retention cleanup failed")
    return True


# PUBLIC_INTERFACE
def sync_app_events(state: AppState, app: dict) -> int:
    """Copy the app's current workload events into the events sink; returns how many were new."""
    new = 0
    for event in state.inspector.list_events(app["name"]):
        if record_event(state, app["id"], event):
            new += 1
    return new


# PUBLIC_INTERFACE
def list_events(
    request: Request,
    app_id: Optional[str] = None,
    event_type: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 100,
) -> Tuple[List[EventOut], int]:
    """List stored events, newest first. Returns (items, total_matching)."""
    cols = get_state(request.app).mongo.collections()
    query: dict = {}
    if app_id:
        query["appId"] = app_id
    if event_type:
        query["type"] = event_type
    if since:
        query["createdAt"] = {"$gte": since}

    total = int(cols.events.count_documents(query))
    docs = list(cols.events.find(query).sort("createdAt", -1).limit(max(1, min(limit, 500))))
    return [_doc_to_out(d) for d in docs], total
