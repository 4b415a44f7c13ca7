from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from shipyard_monitor.schemas.monitoring import HealthCheckOut


AppHealth = Literal["healthy", "degraded", "failed", "warning", "critical", "unknown"]


class AppCreate(BaseModel):
    """Request body for registering an application (get-or-create by name)."""

    name: str = Field(..., description="Application name; also the deployment/service name and the app= label.")


class AppOut(BaseModel):
    """Response model representing a monitored application."""

    id: str = Field(..., description="Stable application identifier.")
    name: str = Field(..., description="Unique application name.")
    created_at: datetime = Field(..., description="UTC timestamp when the app was first referenced.")


class AppListResponse(BaseModel):
    """Envelope for listing applications."""

    items: List[AppOut] = Field(..., description="List of monitored applications.")
    total: int = Field(..., ge=0, description="Total number of applications returned.")


class AppStatusOut(BaseModel):
    """Derived status of one application, built from the latest persisted signals."""

    app_name: str = Field(..., description="Application name.")
    status: AppHealth = Field(..., description="healthy, degraded, failed, warning, critical or unknown.")
    replicas: Optional[str] = Field(default=None, description="Ready/desired replicas, e.g. '3/5'.")
    active_alerts: int = Field(..., ge=0, description="Number of active alerts for the app.")
    health_check: Optional[HealthCheckOut] = Field(default=None, description="Most recent health check.")
    latest_metrics: Dict[str, float] = Field(
        default_factory=dict, description="Most recent value per metric kind (last hour)."
    )
    last_updated: Optional[datetime] = Field(default=None, description="Timestamp of the newest metric point.")
