from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Path, Query, Request

from shipyard_monitor.routers.apps import require_app
from shipyard_monitor.schemas.alerts import (
    AlertCountResponse,
    AlertListResponse,
    AlertOut,
    AlertsQuery,
    AlertStatus,
)
from shipyard_monitor.schemas.common import ErrorResponse, Severity
from shipyard_monitor.services import alerts_service

router = APIRouter(prefix="/api/alerts", tags=["Alerts"])


@router.get(
    "",
    response_model=AlertListResponse,
    summary="List alerts",
    description=(
        "List alerts with filters: app name, status, severity, since. "
        "Active alerts are ordered critical first; otherwise results are sorted by createdAt desc."
    ),
    operation_id="list_alerts",
)
def list_alerts(
    request: Request,
    app_name: Optional[str] = Query(default=None, alias="app", description="Application name filter."),
    status_filter: Optional[AlertStatus] = Query(default=None, alias="status", description="active|resolved|suppressed"),
    severity: Optional[Severity] = Query(default=None, description="info|warning|critical"),
    since: Optional[datetime] = Query(default=None, description="ISO datetime; alerts created at/after."),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0, le=100000),
) -> AlertListResponse:
    """List alerts with filters and pagination."""
    app_id = require_app(request, app_name)["id"] if app_name else None
    filters = AlertsQuery(
        app_id=app_id,
        status=status_filter,
        severity=severity,
        since=since,
        limit=limit,
        offset=offset,
    )
    items, total = alerts_service.list_alerts(request, filters)
    return AlertListResponse(items=items, total=total)


@router.get(
    "/count",
    response_model=AlertCountResponse,
    summary="Count active alerts",
    description="Active alert counts per application and cluster-wide.",
    operation_id="count_active_alerts",
)
def count_active_alerts(
    request: Request,
    app_name: Optional[str] = Query(default=None, alias="app", description="Restrict per-app counts to one app."),
) -> AlertCountResponse:
    """Count active alerts."""
    app_id = require_app(request, app_name)["id"] if app_name else None
    return alerts_service.count_active(request, app_id=app_id)


@router.get(
    "/{alert_id}",
    response_model=AlertOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get alert",
    operation_id="get_alert",
)
def get_alert(request: Request, alert_id: str = Path(..., description="Alert id (Mongo ObjectId string).")) -> AlertOut:
    """Get an alert by id."""
    alert = alerts_service.get_alert(request, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="alert not found")
    return alert


@router.post(
    "/{alert_id}/resolve",
    response_model=AlertOut,
    responses={404: {"model": ErrorResponse}},
    summary="Resolve alert",
    description="Manually resolve an alert. Resolving an already-resolved alert is a no-op.",
    operation_id="resolve_alert",
)
def resolve_alert(
    request: Request, alert_id: str = Path(..., description="Alert id (Mongo ObjectId string).")
) -> AlertOut:
    """Resolve an alert."""
    alert = alerts_service.resolve_alert(request, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="alert not found")
    return alert


@router.post(
    "/{alert_id}/acknowledge",
    response_model=AlertOut,
    responses={404: {"model": ErrorResponse}},
    summary="Acknowledge alert",
    description="Record that an operator has seen the alert. The first acknowledgement time is kept.",
    operation_id="acknowledge_alert",
)
def acknowledge_alert(
    request: Request, alert_id: str = Path(..., description="Alert id (Mongo ObjectId string).")
) -> AlertOut:
    """Acknowledge an alert."""
    alert = alerts_service.acknowledge_alert(request, alert_id)
    if not alert:
        raise HTTPException(status_code=404, detail="alert not found")
    return alert
