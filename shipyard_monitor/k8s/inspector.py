"""Read-only view of the workloads behind a monitored application."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from threading import RLock
from typing import Any, Callable, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.utils import parse_quantity

logger = logging.getLogger(__name__)


class WorkloadAPIError(RuntimeError):
    """Raised when the workload inspection API cannot answer a query."""


@dataclass(frozen=True)
class PodInfo:
    name: str
    ready: bool
    phase: Optional[str] = None


@dataclass(frozen=True)
class PodUsage:
    """Resource usage of a pod, taken from its first container."""

    name: str
    cpu_millicores: float
    memory_bytes: float


@dataclass(frozen=True)
class DeploymentInfo:
    name: str
    desired_replicas: int
    ready_replicas: int


@dataclass(frozen=True)
class ServiceEndpoint:
    cluster_address: str
    port: int


@dataclass(frozen=True)
class ClusterEvent:
    type: str
    reason: str
    message: str
    object_kind: Optional[str]
    object_name: Optional[str]
    first_timestamp: Optional[datetime]
    last_timestamp: Optional[datetime]
    count: int = 1


class WorkloadInspector(ABC):
    """Queries the workload API for a single application (selected by app name)."""

    @abstractmethod
    def list_pods(self, app_name: str) -> List[PodInfo]:
        """Return the current pod set of the app."""

    @abstractmethod
    def pod_resource_usage(self, app_name: str) -> List[PodUsage]:
        """Return per-pod cpu/memory usage samples."""

    @abstractmethod
    def get_deployment(self, app_name: str) -> DeploymentInfo:
        """Return desired/ready replica counts of the app's deployment."""

    @abstractmethod
    def get_service(self, app_name: str) -> ServiceEndpoint:
        """Return the cluster address and first declared port of the app's service."""

    @abstractmethod
    def list_events(self, app_name: str) -> List[ClusterEvent]:
        """Return recent events whose involved object belongs to the app."""


def _pod_is_ready(pod: Any) -> bool:
    for condition in (pod.status.conditions or []) if pod.status else []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


class KubernetesInspector(WorkloadInspector):
    """
    WorkloadInspector backed by the Kubernetes API.

    Apps are matched with the label selector app=<name>; pod usage comes from metrics.k8s.io (metrics-server).
    The client is created lazily so the service can start without cluster access.
    """

    def __init__(self, namespace: str = "default"):
        self.namespace = namespace
        self._api_client: Optional[client.ApiClient] = None
        self._lock = RLock()

    def _ensure_client(self) -> client.ApiClient:
        with self._lock:
            if self._api_client is not None:
                return self._api_client
            try:
                config.load_incluster_config()
            except config.ConfigException:
                try:
                    config.load_kube_config()
                except Exception as exc:
                    raise WorkloadAPIError(f"failed to load kubeconfig: {exc}") from exc
            self._api_client = client.ApiClient()
            return self._api_client

    def _call(self, what: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return fn(**kwargs)
        except ApiException as exc:
            raise WorkloadAPIError(f"{what} failed: {exc.status} {exc.reason}") from exc
        except WorkloadAPIError:
            raise
        except Exception as exc:
            raise WorkloadAPIError(f"{what} failed: {exc}") from exc

    @property
    def core_api(self) -> client.CoreV1Api:
        return client.CoreV1Api(self._ensure_client())

    @property
    def apps_api(self) -> client.AppsV1Api:
        return client.AppsV1Api(self._ensure_client())

    @property
    def custom_api(self) -> client.CustomObjectsApi:
        return client.CustomObjectsApi(self._ensure_client())

    def list_pods(self, app_name: str) -> List[PodInfo]:
        pods = self._call(
            "list pods",
            self.core_api.list_namespaced_pod,
            namespace=self.namespace,
            label_selector=f"app={app_name}",
        )
        return [
            PodInfo(
                name=pod.metadata.name,
                ready=_pod_is_ready(pod),
                phase=pod.status.phase if pod.status else None,
            )
            for pod in pods.items
        ]

    def pod_resource_usage(self, app_name: str) -> List[PodUsage]:
        resp = self._call(
            "list pod metrics",
            self.custom_api.list_namespaced_custom_object,
            group="metrics.k8s.io",
            version="v1beta1",
            namespace=self.namespace,
            plural="pods",
            label_selector=f"app={app_name}",
        )
        usages: List[PodUsage] = []
        for item in resp.get("items", []):
            name = (item.get("metadata") or {}).get("name", "")
            containers = item.get("containers") or []
            if not containers:
                logger.debug("Pod metrics without containers pod=%s", name)
                continue
            usage = containers[0].get("usage") or {}
            cpu = parse_quantity(usage.get("cpu", "0")) * 1000
            memory = parse_quantity(usage.get("memory", "0"))
            usages.append(PodUsage(name=name, cpu_millicores=float(cpu), memory_bytes=float(memory)))
        return usages

    def get_deployment(self, app_name: str) -> DeploymentInfo:
        deployment = self._call(
            "read deployment",
            self.apps_api.read_namespaced_deployment,
            name=app_name,
            namespace=self.namespace,
        )
        return DeploymentInfo(
            name=app_name,
            desired_replicas=int(deployment.spec.replicas or 0),
            # ready_replicas is omitted by the API when zero
            ready_replicas=int(deployment.status.ready_replicas or 0),
        )

    def get_service(self, app_name: str) -> ServiceEndpoint:
        service = self._call(
            "read service",
            self.core_api.read_namespaced_service,
            name=app_name,
            namespace=self.namespace,
        )
        ports = service.spec.ports or []
        if not ports:
            raise WorkloadAPIError(f"service {app_name} declares no ports")
        return ServiceEndpoint(cluster_address=service.spec.cluster_ip, port=int(ports[0].port))

    def list_events(self, app_name: str) -> List[ClusterEvent]:
        events = self._call("list events", self.core_api.list_namespaced_event, namespace=self.namespace)
        out: List[ClusterEvent] = []
        for ev in events.items:
            obj = ev.involved_object
            obj_name = obj.name if obj else None
            # Pods and replica sets are named <app>-<hash>.
            if not obj_name or not (obj_name == app_name or obj_name.startswith(f"{app_name}-")):
                continue
            out.append(
                ClusterEvent(
                    type=ev.type or "Normal",
                    reason=ev.reason or "",
                    message=ev.message or "",
                    object_kind=obj.kind if obj else None,
                    object_name=obj_name,
                    first_timestamp=ev.first_timestamp,
                    last_timestamp=ev.last_timestamp,
                    count=int(ev.count or 1),
                )
            )
        return out
