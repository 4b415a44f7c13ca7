from __future__ import annotations

import re
from typing import Any, Dict

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from shipyard_monitor.schemas.common import HealthResponse, utc_now
from shipyard_monitor.state import get_state

router = APIRouter(tags=["Health"])


def _sanitize_mongo_uri_for_response(uri: str) -> str:
    """Mask credentials in mongo URIs to avoid returning secrets to clients."""
    return re.sub(r"(mongodb(?:\+srv)?://)([^:@/]+):([^@/]+)@", r"\1\2:***@", uri)


class MongoConnectivityResponse(BaseModel):
    """Response model for backend↔Mongo connectivity diagnostics."""

    ok: bool = Field(..., description="Whether the backend can successfully ping MongoDB.")
    mongo_db_name: str = Field(..., description="Database the monitor stores its collections in.")
    mongo_uri_sanitized: str = Field(..., description="MongoDB URI with credentials masked.")
    timestamp: str = Field(..., description="UTC timestamp when the check was performed (ISO string).")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional debug metadata.")


class EngineSettingsResponse(BaseModel):
    """Alert engine and retention constants in effect."""

    alert_window_seconds: int
    memory_checkpoint_mb: float
    cpu_normalization_millicores: float
    critical_multiplier: float
    metrics_retention_days: int
    health_checks_retention_days: int
    events_retention_days: int
    collector_enabled: bool
    collector_interval_sec: int


@router.get(
    "/",
    response_model=HealthResponse,
    summary="Health check",
    description="Basic service liveness check used by deployment.",
    operation_id="health_check",
)
def health_check() -> HealthResponse:
    """Return service liveness status."""
    return HealthResponse(status="ok", message="Healthy", timestamp=utc_now())


@router.get(
    "/api/health/mongo",
    response_model=MongoConnectivityResponse,
    summary="Mongo connectivity check",
    description="Pings the backend's configured MongoDB. Credentials are masked.",
    operation_id="mongo_connectivity_check",
)
def mongo_connectivity_check(request: Request) -> MongoConnectivityResponse:
    """Connectivity check endpoint to validate backend↔Mongo."""
    state = get_state(request.app)
    ok = state.mongo.ping()

    return MongoConnectivityResponse(
        ok=ok,
        mongo_db_name=state.config.mongo_db_name,
        mongo_uri_sanitized=_sanitize_mongo_uri_for_response(state.config.mongo_uri),
        timestamp=utc_now().isoformat(),
        meta={"namespace": state.config.namespace},
    )


@router.get(
    "/api/health/engine",
    response_model=EngineSettingsResponse,
    summary="Engine settings",
    description="Reports the alert window, fixed checkpoints and retention horizons in effect.",
    operation_id="engine_settings",
)
def engine_settings(request: Request) -> EngineSettingsResponse:
    """Return the alert engine / retention constants."""
    cfg = get_state(request.app).config
    eng = cfg.engine
    return EngineSettingsResponse(
        alert_window_seconds=eng.alert_window_seconds,
        memory_checkpoint_mb=eng.memory_checkpoint_mb,
        cpu_normalization_millicores=eng.cpu_normalization_millicores,
        critical_multiplier=eng.critical_multiplier,
        metrics_retention_days=eng.metrics_retention_days,
        health_checks_retention_days=eng.health_checks_retention_days,
        events_retention_days=eng.events_retention_days,
        collector_enabled=cfg.collector_enabled,
        collector_interval_sec=cfg.collector_interval_sec,
    )
