from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Optional, Tuple

import httpx
from pymongo.errors import PyMongoError

from shipyard_monitor.k8s.inspector import WorkloadAPIError
from shipyard_monitor.schemas.common import utc_now
from shipyard_monitor.schemas.monitoring import HealthCheckOut, HealthStatus, MonitoringConfig
from shipyard_monitor.services import retention
from shipyard_monitor.state import AppState

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


# PUBLIC_INTERFACE
def record_health_check(state: AppState, result: HealthCheckOut) -> None:
    """Append one health-check result, then prune results past the retention horizon."""
    cols = state.mongo.collections()
    cols.health_checks.insert_one(
        {
            "appId": result.app_id,
            "endpoint": result.endpoint,
            "method": result.method,
            "status": result.status.value,
            "statusCode": result.status_code,
            "responseTimeMs": result.response_time_ms,
            "errorMessage": result.error_message,
            "checkedAt": result.checked_at,
        }
    )
    try:
        retention.sweep(
            cols.health_checks, "checkedAt", timedelta(days=state.config.engine.health_checks_retention_days)
        )
    except PyMongoError:
        logger.exception("Health-check retention cleanup failed")


def _probe(state: AppState, url: str, timeout_sec: float) -> Tuple[HealthStatus, Optional[int], Optional[str]]:
    """Issue the GET and classify the outcome as (status, status_code, error_message)."""
    try:
        with httpx.Client(timeout=timeout_sec, transport=state.probe_transport) as client:
            resp = client.get(url)
    except httpx.TimeoutException as exc:
        return HealthStatus.timeout, None, str(exc) or "request timed out"
    except httpx.HTTPError as exc:
        return HealthStatus.error, None, str(exc) or exc.__class__.__name__

    if 200 <= resp.status_code < 300:
        return HealthStatus.healthy, resp.status_code, None
    return HealthStatus.unhealthy, resp.status_code, None


# PUBLIC_INTERFACE
def probe_app(state: AppState, app: dict, config: MonitoringConfig) -> Optional[HealthCheckOut]:
    """
    Probe an app's service once and record the result.

    Writes exactly one health-check document, or none when probing is disabled for the app.
    The request is bounded by config.health_check_timeout; expiry is recorded as status=timeout.
    """
    if not config.enabled:
        return None

    started = time.monotonic()
    try:
        endpoint = state.inspector.get_service(app["name"])
    except WorkloadAPIError as exc:
        status, status_code, error = HealthStatus.error, None, f"service lookup failed: {exc}"
    else:
        url = f"http://{endpoint.cluster_address}:{endpoint.port}{config.health_check_path}"
        started = time.monotonic()
        status, status_code, error = _probe(state, url, float(config.health_check_timeout))

    result = HealthCheckOut(
        app_id=app["id"],
        endpoint=config.health_check_path,
        method="GET",
        status=status,
        status_code=status_code,
        response_time_ms=_elapsed_ms(started),
        error_message=error,
        checked_at=utc_now(),
    )
    record_health_check(state, result)
    return result
