from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Path, Query, Request

from shipyard_monitor.routers.apps import require_app
from shipyard_monitor.schemas.monitoring import HealthCheckListResponse, HealthSummaryOut
from shipyard_monitor.services import health_service

router = APIRouter(prefix="/api/health-checks", tags=["Health checks"])


@router.get(
    "/{name}",
    response_model=HealthCheckListResponse,
    summary="Health-check history",
    description="Recorded probe results for an app, newest first.",
    operation_id="list_health_checks",
)
def list_health_checks(
    request: Request,
    name: str = Path(..., description="Application name"),
    start: Optional[datetime] = Query(default=None, description="ISO datetime start (inclusive)"),
    end: Optional[datetime] = Query(default=None, description="ISO datetime end (inclusive)"),
    limit: int = Query(100, ge=1, le=1000),
) -> HealthCheckListResponse:
    """List health-check history."""
    app = require_app(request, name)
    items, total = health_service.list_health_checks(request, app["id"], start, end, limit)
    return HealthCheckListResponse(items=items, total=total)


@router.get(
    "/{name}/summary",
    response_model=HealthSummaryOut,
    summary="Health-check summary",
    description="Healthy vs. non-healthy probe counts and average response time over the period.",
    operation_id="health_check_summary",
)
def health_check_summary(
    request: Request,
    name: str = Path(..., description="Application name"),
    period_minutes: int = Query(60, ge=1, le=7 * 24 * 60),
) -> HealthSummaryOut:
    """Summarize recent health checks."""
    app = require_app(request, name)
    return health_service.summarize(request, app, timedelta(minutes=period_minutes))
