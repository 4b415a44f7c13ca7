from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from shipyard_monitor.schemas.common import Severity


class AlertStatus(str, Enum):
    """Lifecycle status of an alert."""

    active = "active"
    resolved = "resolved"
    suppressed = "suppressed"


class AlertOut(BaseModel):
    """Response model for an alert."""

    id: str = Field(..., description="Alert id (Mongo ObjectId string).")
    app_id: str = Field(..., description="Application id the alert applies to.")
    app_name: Optional[str] = Field(default=None, description="Application name, when known.")
    type: str = Field(..., description="Alert type key, e.g. cpu_high.")
    threshold: float = Field(..., description="Threshold the value was compared against.")
    current_value: float = Field(..., description="Value observed at the latest evaluation.")
    severity: Severity = Field(..., description="Current severity.")
    status: AlertStatus = Field(..., description="active, resolved or suppressed.")
    message: str = Field(..., description="Human-readable message.")
    created_at: datetime = Field(..., description="UTC timestamp when the alert was first raised.")
    resolved_at: Optional[datetime] = Field(default=None, description="UTC timestamp when resolved.")
    acknowledged_at: Optional[datetime] = Field(default=None, description="UTC timestamp when acknowledged.")


class AlertListResponse(BaseModel):
    """Envelope for listing alerts."""

    items: List[AlertOut] = Field(..., description="List of alerts.")
    total: int = Field(..., ge=0, description="Total count matching the filters.")


class AlertsQuery(BaseModel):
    """Filter/pagination model for listing alerts (used by router query params)."""

    app_id: Optional[str] = Field(default=None, description="Filter by application id.")
    status: Optional[AlertStatus] = Field(default=None, description="Filter by status.")
    severity: Optional[Severity] = Field(default=None, description="Filter by severity.")
    since: Optional[datetime] = Field(default=None, description="Only alerts created at/after this time.")
    limit: int = Field(100, ge=1, le=500, description="Max number of alerts to return.")
    offset: int = Field(0, ge=0, le=100000, description="Offset for pagination (simple skip).")


class AlertCountResponse(BaseModel):
    """Active alert counts per application and cluster-wide."""

    total_active: int = Field(..., ge=0, description="Active alerts across all applications.")
    by_app: Dict[str, int] = Field(default_factory=dict, description="Active alerts keyed by application name.")
