from __future__ import annotations

from fastapi import APIRouter, HTTPException, Path, Request

from shipyard_monitor.schemas.apps import AppCreate, AppListResponse, AppOut, AppStatusOut
from shipyard_monitor.schemas.common import ErrorResponse
from shipyard_monitor.schemas.monitoring import MonitoringConfig, MonitoringConfigUpdate
from shipyard_monitor.services import apps_service, config_resolver, status_service
from shipyard_monitor.state import get_state

router = APIRouter(prefix="/api/apps", tags=["Apps"])


# PUBLIC_INTERFACE
def require_app(request: Request, name: str) -> dict:
    """Return the app doc for a name or raise 404."""
    app = apps_service.get_app_by_name(get_state(request.app), name)
    if not app:
        raise HTTPException(status_code=404, detail="app not found")
    return app


@router.get(
    "",
    response_model=AppListResponse,
    summary="List apps",
    description="Return all monitored applications, ordered by name.",
    operation_id="list_apps",
)
def list_apps(request: Request) -> AppListResponse:
    """List all monitored applications."""
    docs = apps_service.list_app_docs(get_state(request.app), sort_by_name=True)
    items = [apps_service.doc_to_out(d) for d in docs]
    return AppListResponse(items=items, total=len(items))


@router.post(
    "",
    response_model=AppOut,
    responses={400: {"model": ErrorResponse}},
    summary="Register app",
    description="Get or create an application by name. Registering an existing name returns it unchanged.",
    operation_id="register_app",
)
def register_app(request: Request, payload: AppCreate) -> AppOut:
    """Get or create an application by name."""
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="name must not be empty")
    return apps_service.doc_to_out(apps_service.get_or_create_app(get_state(request.app), name))


@router.get(
    "/{name}",
    response_model=AppOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get app",
    operation_id="get_app",
)
def get_app(request: Request, name: str = Path(..., description="Application name")) -> AppOut:
    """Fetch a single application by name."""
    return apps_service.doc_to_out(require_app(request, name))


@router.get(
    "/{name}/status",
    response_model=AppStatusOut,
    responses={404: {"model": ErrorResponse}},
    summary="Get app status",
    description="Derived status from the latest replica metrics, active alerts and health check.",
    operation_id="get_app_status",
)
def get_app_status(request: Request, name: str = Path(..., description="Application name")) -> AppStatusOut:
    """Return the derived status of an application."""
    return status_service.get_app_status(request, require_app(request, name))


@router.get(
    "/{name}/config",
    response_model=MonitoringConfig,
    responses={404: {"model": ErrorResponse}},
    summary="Get monitoring config",
    description="Return the app's monitoring configuration, creating the defaults on first access.",
    operation_id="get_monitoring_config",
)
def get_config(request: Request, name: str = Path(..., description="Application name")) -> MonitoringConfig:
    """Return (or lazily create) the monitoring configuration."""
    app = require_app(request, name)
    return config_resolver.resolve_config(get_state(request.app), app["id"])


@router.patch(
    "/{name}/config",
    response_model=MonitoringConfig,
    responses={404: {"model": ErrorResponse}},
    summary="Update monitoring config",
    description="Partially update thresholds, probe settings and retention for an app.",
    operation_id="patch_monitoring_config",
)
def patch_config(
    request: Request,
    payload: MonitoringConfigUpdate,
    name: str = Path(..., description="Application name"),
) -> MonitoringConfig:
    """Patch the monitoring configuration."""
    app = require_app(request, name)
    if payload.health_check_path is not None and not payload.health_check_path.startswith("/"):
        raise HTTPException(status_code=400, detail="health_check_path must start with '/'")
    return config_resolver.update_config(get_state(request.app), app["id"], payload)
