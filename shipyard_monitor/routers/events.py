from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from shipyard_monitor.routers.apps import require_app
from shipyard_monitor.schemas.events import EventListResponse
from shipyard_monitor.services import events_service

router = APIRouter(prefix="/api/events", tags=["Events"])


@router.get(
    "",
    response_model=EventListResponse,
    summary="List workload events",
    description="Recorded cluster events, newest first. Filter by app name, event type and time.",
    operation_id="list_events",
)
def list_events(
    request: Request,
    app_name: Optional[str] = Query(default=None, alias="app", description="Application name filter."),
    event_type: Optional[str] = Query(default=None, alias="type", description="Normal|Warning"),
    since: Optional[datetime] = Query(default=None, description="ISO datetime; events recorded at/after."),
    limit: int = Query(100, ge=1, le=500),
) -> EventListResponse:
    """List recorded workload events."""
    app_id = require_app(request, app_name)["id"] if app_name else None
    items, total = events_service.list_events(request, app_id=app_id, event_type=event_type, since=since, limit=limit)
    return EventListResponse(items=items, total=total)
