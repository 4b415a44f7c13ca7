from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Path, Query, Request

from shipyard_monitor.routers.apps import require_app
from shipyard_monitor.schemas.metrics import LatestMetricsResponse, MetricHistoryResponse
from shipyard_monitor.services import metrics_service

router = APIRouter(prefix="/api/metrics", tags=["Metrics"])


@router.get(
    "/{name}/history",
    response_model=MetricHistoryResponse,
    summary="Get metric history",
    description="Metric points of an app in a time range (default: last hour), optionally filtered by kind.",
    operation_id="get_metric_history",
)
def get_metric_history(
    request: Request,
    name: str = Path(..., description="Application name"),
    kind: Optional[str] = Query(default=None, description="Metric kind (cpu, memory, pods, ...)."),
    start: Optional[datetime] = Query(default=None, description="ISO datetime start (inclusive)"),
    end: Optional[datetime] = Query(default=None, description="ISO datetime end (inclusive)"),
    limit: int = Query(1000, ge=1, le=10000),
) -> MetricHistoryResponse:
    """Return metric history for charting."""
    app = require_app(request, name)
    return metrics_service.get_history(request, app, kind, start, end, limit)


@router.get(
    "/{name}/latest",
    response_model=LatestMetricsResponse,
    summary="Get latest metrics",
    description="Newest point per metric kind within the last hour.",
    operation_id="get_latest_metrics",
)
def get_latest_metrics(request: Request, name: str = Path(..., description="Application name")) -> LatestMetricsResponse:
    """Return the newest point per metric kind."""
    return metrics_service.get_latest(request, require_app(request, name))
