from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class MetricPointOut(BaseModel):
    """A single persisted metric observation."""

    kind: str = Field(..., description="Metric kind (cpu, memory, pods, ...).")
    value: float = Field(..., description="Numeric value.")
    unit: Optional[str] = Field(default=None, description="Unit string (millicores, bytes, count, ...).")
    pod_name: Optional[str] = Field(default=None, description="Pod the point was taken from, if any.")
    ts: datetime = Field(..., description="UTC timestamp for the data point.")


class MetricHistoryResponse(BaseModel):
    """Response model for a metric history query."""

    app_name: str = Field(..., description="Application the points belong to.")
    kind: Optional[str] = Field(default=None, description="Kind filter applied, if any.")
    start: datetime = Field(..., description="UTC start of the range (inclusive).")
    end: datetime = Field(..., description="UTC end of the range (inclusive).")
    points: List[MetricPointOut] = Field(..., description="Points ordered oldest first.")


class LatestMetricsResponse(BaseModel):
    """Most recent point per metric kind."""

    app_name: str = Field(..., description="Application name.")
    items: List[MetricPointOut] = Field(..., description="One point per kind, newest sample.")
