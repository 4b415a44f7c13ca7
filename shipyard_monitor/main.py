from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shipyard_monitor.config import BackendConfig, load_config
from shipyard_monitor.db.mongo import MongoManager
from shipyard_monitor.k8s.inspector import KubernetesInspector, WorkloadInspector
from shipyard_monitor.routers import alerts, apps, collect, events, health, health_checks, metrics
from shipyard_monitor.services.collector import collector_loop
from shipyard_monitor.state import get_state, init_state

openapi_tags = [
    {"name": "Health", "description": "Service health and liveness."},
    {"name": "Apps", "description": "Monitored applications, their status and monitoring configuration."},
    {"name": "Metrics", "description": "Collected workload metrics (history and latest values)."},
    {"name": "Health checks", "description": "HTTP probe results per application."},
    {"name": "Alerts", "description": "Threshold alerts raised and resolved by the collector."},
    {"name": "Events", "description": "Workload events copied from the cluster."},
    {"name": "Collector", "description": "On-demand collection cycles."},
]

logger = logging.getLogger(__name__)


def _env_frontend_url() -> str | None:
    # FRONTEND_URL is the dashboard origin; REACT_APP_FRONTEND_URL is still honored.
    return os.getenv("FRONTEND_URL") or os.getenv("REACT_APP_FRONTEND_URL")


def _env_cors_extra_origins() -> List[str]:
    # Comma-separated list for preview deployments, etc.
    raw = os.getenv("CORS_ALLOW_ORIGINS") or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


def _allowed_origins() -> List[str]:
    origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    frontend_url = _env_frontend_url()
    if frontend_url:
        origins.append(frontend_url)
    origins.extend(_env_cors_extra_origins())

    # De-dupe while preserving order
    seen = set()
    return [o for o in origins if not (o in seen or seen.add(o))]


# PUBLIC_INTERFACE
def create_app(
    config: Optional[BackendConfig] = None,
    mongo: Optional[MongoManager] = None,
    inspector: Optional[WorkloadInspector] = None,
    probe_transport: Optional[httpx.BaseTransport] = None,
) -> FastAPI:
    """
    Build the monitor API.

    Dependencies default to the env config, a real MongoClient and the in-cluster Kubernetes API;
    tests hand in their own.
    """
    config = config or load_config()
    mongo = mongo or MongoManager(config.mongo_uri, config.mongo_db_name)
    inspector = inspector or KubernetesInspector(config.namespace)

    app = FastAPI(
        title="Shipyard Monitor API",
        description=(
            "Monitoring backend for applications deployed to a Kubernetes namespace. "
            "A background collector samples workload metrics, probes health endpoints, evaluates "
            "threshold alerts and copies cluster events into MongoDB on a fixed interval."
        ),
        version="0.1.0",
        openapi_tags=openapi_tags,
    )
    init_state(app, config, mongo, inspector, probe_transport=probe_transport)

    @app.on_event("startup")
    async def _on_startup() -> None:
        """Startup hook: connect to Mongo, validate connectivity, ensure indexes, and start the collector."""
        state = get_state(app)

        state.mongo.connect()
        if not state.mongo.ping():
            raise RuntimeError("Mongo connectivity check failed during startup. Verify MONITOR_MONGO_URI.")
        state.mongo.init_indexes()

        if not state.config.collector_enabled:
            logger.info("Collector disabled (COLLECTOR_ENABLED=false)")
            return
        app.state._collector_shutdown = asyncio.Event()
        state.collector_task = asyncio.create_task(collector_loop(state, app.state._collector_shutdown))

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        """Shutdown hook: stop the collector and close Mongo connections."""
        state = get_state(app)

        # Ends an in-flight cycle before its next app.
        state.stop_event.set()
        collector_shutdown = getattr(app.state, "_collector_shutdown", None)
        if collector_shutdown is not None:
            collector_shutdown.set()
        task = state.collector_task
        if task is not None:
            try:
                await asyncio.wait_for(task, timeout=30.0)
            except Exception:
                logger.exception("Error stopping collector task")

        state.mongo.close()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(apps.router)
    app.include_router(metrics.router)
    app.include_router(health_checks.router)
    app.include_router(alerts.router)
    app.include_router(events.router)
    app.include_router(collect.router)
    return app


app = create_app()
