from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from shipyard_monitor.schemas.common import ErrorResponse
from shipyard_monitor.services.collector import CollectionError, run_collection
from shipyard_monitor.state import get_state

router = APIRouter(prefix="/api/collect", tags=["Collector"])


class StageOutcomeOut(BaseModel):
    app_name: str
    stage: str
    ok: bool
    detail: Optional[str] = None


class CollectionReportOut(BaseModel):
    """Outcome of an on-demand collection cycle."""

    apps: List[str] = Field(default_factory=list, description="Apps whose pipeline ran, in order.")
    outcomes: List[StageOutcomeOut] = Field(default_factory=list)
    warnings: int = Field(..., ge=0, description="Number of failed stages.")
    stopped: bool = Field(False, description="True when the run was cut short by shutdown.")


@router.post(
    "",
    response_model=CollectionReportOut,
    responses={503: {"model": ErrorResponse}},
    summary="Run a collection cycle",
    description=(
        "Run config, metrics, health, alerts and events for all apps (or one app) right now. "
        "Per-app stage failures are reported as warnings; an unknown app name runs nothing. "
        "503 means the app list could not be read."
    ),
    operation_id="run_collection",
)
async def collect_now(
    request: Request,
    app_name: Optional[str] = Query(default=None, alias="app", description="Only collect this app."),
) -> CollectionReportOut:
    """Trigger one collection cycle."""
    state = get_state(request.app)
    try:
        report = await run_in_threadpool(run_collection, state, app_name)
    except CollectionError as exc:
        raise HTTPException(status_code=503, detail=str(exc))

    return CollectionReportOut(
        apps=report.apps,
        outcomes=[
            StageOutcomeOut(app_name=o.app_name, stage=o.stage, ok=o.ok, detail=o.detail) for o in report.outcomes
        ],
        warnings=len(report.warnings),
        stopped=report.stopped,
    )
