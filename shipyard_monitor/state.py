from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import FastAPI

from shipyard_monitor.config import BackendConfig
from shipyard_monitor.db.mongo import MongoManager
from shipyard_monitor.k8s.inspector import WorkloadInspector


@dataclass
class AppState:
    """Typed app.state container for shared singletons."""

    config: BackendConfig
    mongo: MongoManager
    inspector: WorkloadInspector

    # Transport used by the health prober; None means the real network.
    probe_transport: Optional[httpx.BaseTransport] = None

    collector_task: Optional[object] = None  # asyncio.Task, but kept loose to avoid import cycles

    # Checked by the orchestrator before each app's pipeline.
    stop_event: threading.Event = field(default_factory=threading.Event)


# PUBLIC_INTERFACE
def init_state(
    app: FastAPI,
    config: BackendConfig,
    mongo: MongoManager,
    inspector: WorkloadInspector,
    probe_transport: Optional[httpx.BaseTransport] = None,
) -> AppState:
    """Initialize app.state with config, Mongo manager and workload inspector."""
    state = AppState(config=config, mongo=mongo, inspector=inspector, probe_transport=probe_transport)
    app.state.state = state
    return state


# PUBLIC_INTERFACE
def get_state(app: FastAPI) -> AppState:
    """Fetch typed AppState from a FastAPI app."""
    return app.state.state  # type: ignore[attr-defined]
