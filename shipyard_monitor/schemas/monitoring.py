from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MetricKind(str, Enum):
    """Known metric kinds. The store keeps kind as free text, so samplers may add more."""

    cpu = "cpu"
    memory = "memory"
    network = "network"
    disk = "disk"
    pods = "pods"
    pods_ready = "pods_ready"
    requests = "requests"
    errors = "errors"
    latency = "latency"
    replicas_desired = "replicas_desired"
    replicas_ready = "replicas_ready"


class HealthStatus(str, Enum):
    """Outcome of a single health probe."""

    healthy = "healthy"
    unhealthy = "unhealthy"
    timeout = "timeout"
    error = "error"


class MonitoringConfig(BaseModel):
    """Per-application monitoring configuration (one per app)."""

    app_id: str = Field(..., description="Application id this config belongs to.")
    enabled: bool = Field(True, description="Whether health probing is enabled.")
    health_check_path: str = Field("/health", description="HTTP path probed on the app's service.")
    health_check_interval: int = Field(30, ge=1, description="Probe interval (seconds).")
    health_check_timeout: int = Field(5, ge=1, description="Probe timeout (seconds).")
    metrics_enabled: bool = Field(True, description="Whether the app exposes a metrics endpoint.")
    metrics_path: str = Field("/metrics", description="Metrics endpoint path.")
    metrics_port: int = Field(9090, ge=1, le=65535, description="Metrics endpoint port.")
    retention_days: int = Field(7, ge=1, description="Requested retention window (days).")
    cpu_threshold: float = Field(80.0, ge=0, description="CPU alert threshold (percent).")
    memory_threshold: float = Field(85.0, ge=0, description="Memory threshold (percent).")
    error_rate_threshold: float = Field(5.0, ge=0, description="Error-rate threshold (percent).")
    response_time_threshold: int = Field(1000, ge=0, description="Response-time threshold (ms).")
    created_at: Optional[datetime] = Field(default=None, description="UTC creation timestamp.")
    updated_at: Optional[datetime] = Field(default=None, description="UTC last update timestamp.")


class MonitoringConfigUpdate(BaseModel):
    """Partial update of a monitoring configuration."""

    enabled: Optional[bool] = None
    health_check_path: Optional[str] = None
    health_check_interval: Optional[int] = Field(default=None, ge=1)
    health_check_timeout: Optional[int] = Field(default=None, ge=1)
    metrics_enabled: Optional[bool] = None
    metrics_path: Optional[str] = None
    metrics_port: Optional[int] = Field(default=None, ge=1, le=65535)
    retention_days: Optional[int] = Field(default=None, ge=1)
    cpu_threshold: Optional[float] = Field(default=None, ge=0)
    memory_threshold: Optional[float] = Field(default=None, ge=0)
    error_rate_threshold: Optional[float] = Field(default=None, ge=0)
    response_time_threshold: Optional[int] = Field(default=None, ge=0)


class HealthCheckOut(BaseModel):
    """A persisted health probe result."""

    app_id: str
    endpoint: str
    method: str = "GET"
    status: HealthStatus
    status_code: Optional[int] = None
    response_time_ms: int = Field(..., ge=0)
    error_message: Optional[str] = None
    checked_at: datetime


class HealthCheckListResponse(BaseModel):
    """Envelope for health-check history."""

    items: List[HealthCheckOut]
    total: int = Field(..., ge=0)


class HealthSummaryOut(BaseModel):
    """Aggregate of health checks over a period."""

    app_name: str
    healthy_checks: int = Field(..., ge=0)
    unhealthy_checks: int = Field(..., ge=0)
    avg_response_time_ms: Optional[float] = None
    last_check: Optional[datetime] = None
