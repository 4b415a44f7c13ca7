from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Dict, List, Optional, Set, Union

import httpx
import mongomock
import pytest

from shipyard_monitor.config import BackendConfig, EngineSettings
from shipyard_monitor.db.mongo import MongoManager
from shipyard_monitor.k8s.inspector import (
    ClusterEvent,
    DeploymentInfo,
    PodInfo,
    PodUsage,
    ServiceEndpoint,
    WorkloadAPIError,
    WorkloadInspector,
)
from shipyard_monitor.main import create_app
from shipyard_monitor.state import AppState, get_state

MB = 1024 * 1024


class FakeInspector(WorkloadInspector):
    """
    In-memory workload API.

    Every operation can be broken per app via `broken[app] = {"list_pods", ...}` (or {"*"} for all).
    A missing deployment or service behaves like a 404 from the cluster.
    """

    def __init__(self):
        self.pods: Dict[str, List[PodInfo]] = {}
        self.usage: Dict[str, List[PodUsage]] = {}
        self.deployments: Dict[str, DeploymentInfo] = {}
        self.services: Dict[str, ServiceEndpoint] = {}
        self.events: Dict[str, List[ClusterEvent]] = {}
        self.broken: Dict[str, Set[str]] = {}
        self.calls: List[str] = []

    def add_app(
        self,
        name: str,
        replicas: int = 2,
        ready: Optional[int] = None,
        cpu_millicores: float = 100.0,
        memory_bytes: float = 100 * MB,
        address: Optional[str] = None,
    ) -> None:
        ready = replicas if ready is None else ready
        self.pods[name] = [PodInfo(name=f"{name}-{i}", ready=i < ready, phase="Running") for i in range(replicas)]
        self.usage[name] = [PodUsage(name=f"{name}-0", cpu_millicores=cpu_millicores, memory_bytes=memory_bytes)]
        self.deployments[name] = DeploymentInfo(name=name, desired_replicas=replicas, ready_replicas=ready)
        self.services[name] = ServiceEndpoint(cluster_address=address or f"{name}.svc", port=8080)

    def set_usage(self, name: str, cpu_millicores: float, memory_bytes: float = 100 * MB) -> None:
        self.usage[name] = [PodUsage(name=f"{name}-0", cpu_millicores=cpu_millicores, memory_bytes=memory_bytes)]

    def _check(self, app_name: str, op: str) -> None:
        self.calls.append(f"{op}:{app_name}")
        broken = self.broken.get(app_name, set())
        if op in broken or "*" in broken:
            raise WorkloadAPIError(f"{op} failed: 500 Internal Server Error")

    def list_pods(self, app_name: str) -> List[PodInfo]:
        self._check(app_name, "list_pods")
        return list(self.pods.get(app_name, []))

    def pod_resource_usage(self, app_name: str) -> List[PodUsage]:
        self._check(app_name, "pod_resource_usage")
        return list(self.usage.get(app_name, []))

    def get_deployment(self, app_name: str) -> DeploymentInfo:
        self._check(app_name, "get_deployment")
        if app_name not in self.deployments:
            raise WorkloadAPIError("read deployment failed: 404 Not Found")
        return self.deployments[app_name]

    def get_service(self, app_name: str) -> ServiceEndpoint:
        self._check(app_name, "get_service")
        if app_name not in self.services:
            raise WorkloadAPIError("read service failed: 404 Not Found")
        return self.services[app_name]

    def list_events(self, app_name: str) -> List[ClusterEvent]:
        self._check(app_name, "list_events")
        return list(self.events.get(app_name, []))


class ProbeRoutes:
    """
    Handler for httpx.MockTransport keyed by request host.

    A value is either a status code or an exception instance to raise; unknown hosts refuse the connection.
    """

    def __init__(self):
        self.outcomes: Dict[str, Union[int, Exception]] = {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.outcomes.get(request.url.host)
        if outcome is None:
            raise httpx.ConnectError("connection refused", request=request)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text="ok")


@pytest.fixture
def backend_config() -> BackendConfig:
    """Deterministic config; the background collector stays off so tests drive cycles explicitly."""
    return BackendConfig(
        mongo_uri="mongodb://localhost:27017",
        mongo_db_name="shipyard_test",
        namespace="test",
        collector_enabled=False,
        collector_interval_sec=1,
        engine=EngineSettings(),
    )


@pytest.fixture
def mongo(backend_config: BackendConfig) -> MongoManager:
    """MongoManager over an in-memory mongomock client, with the production indexes."""
    manager = MongoManager(backend_config.mongo_uri, backend_config.mongo_db_name, client=mongomock.MongoClient())
    manager.init_indexes()
    return manager


@pytest.fixture
def inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def probe_routes() -> ProbeRoutes:
    return ProbeRoutes()


@pytest.fixture
def app(backend_config: BackendConfig, mongo: MongoManager, inspector: FakeInspector, probe_routes: ProbeRoutes):
    """FastAPI app wired to mongomock, the fake workload API and a mocked probe transport."""
    return create_app(
        config=backend_config,
        mongo=mongo,
        inspector=inspector,
        probe_transport=httpx.MockTransport(probe_routes),
    )


@pytest.fixture
def state(app) -> AppState:
    return get_state(app)


@pytest.fixture
def mongo_db(mongo: MongoManager):
    """Database handle for direct inspection/seeding."""
    return mongo.db()


@pytest.fixture
async def async_client(app) -> AsyncIterator[httpx.AsyncClient]:
    """
    Async HTTP client bound to the FastAPI ASGI app.

    ASGITransport does not run startup/shutdown hooks, so no Mongo ping or collector task is involved.
    """
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def anyio_backend() -> str:
    """The code under test is built on asyncio; run anyio-marked tests on that backend only."""
    return "asyncio"
