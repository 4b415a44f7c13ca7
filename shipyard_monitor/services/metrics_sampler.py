from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from shipyard_monitor.k8s.inspector import WorkloadAPIError
from shipyard_monitor.schemas.common import utc_now
from shipyard_monitor.schemas.monitoring import MetricKind
from shipyard_monitor.services.metrics_service import record_metric
from shipyard_monitor.state import AppState

logger = logging.getLogger(__name__)


@dataclass
class SampleReport:
    """What one sampling pass wrote and which sub-steps could not fetch their data."""

    app_name: str
    points_written: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def _sample_pods(state: AppState, app: dict, report: SampleReport) -> None:
    pods = state.inspector.list_pods(app["name"])
    now = utc_now()
    ready = sum(1 for p in pods if p.ready)

    record_metric(state, app["id"], MetricKind.pods.value, float(len(pods)), "count", ts=now)
    record_metric(state, app["id"], MetricKind.pods_ready.value, float(ready), "count", ts=now)
    report.points_written += 2


def _sample_usage(state: AppState, app: dict, report: SampleReport) -> None:
    usages = state.inspector.pod_resource_usage(app["name"])
    now = utc_now()
    for usage in usages:
        # First container only; multi-container pods are not broken down.
        record_metric(state, app["id"], MetricKind.cpu.value, usage.cpu_millicores, "millicores", usage.name, now)
        record_metric(state, app["id"], MetricKind.memory.value, usage.memory_bytes, "bytes", usage.name, now)
        report.points_written += 2


def _sample_deployment(state: AppState, app: dict, report: SampleReport) -> None:
    deployment = state.inspector.get_deployment(app["name"])
    now = utc_now()
    record_metric(
        state, app["id"], MetricKind.replicas_desired.value, float(deployment.desired_replicas), "count", ts=now
    )
    record_metric(state, app["id"], MetricKind.replicas_ready.value, float(deployment.ready_replicas), "count", ts=now)
    report.points_written += 2


_SUB_STEPS = (
    ("pods", _sample_pods),
    ("pod_usage", _sample_usage),
    ("deployment", _sample_deployment),
)


# PUBLIC_INTERFACE
def sample_app(state: AppState, app: dict) -> SampleReport:
    """
    Query the workload API for one app and write metric points.

    Each sub-step (pods, pod usage, deployment) is attempted even when an earlier one could not fetch
    its data; those fetch failures are listed in the report for the orchestrator to warn about.
    Store errors are not caught here.
    """
    report = SampleReport(app_name=app["name"])
    for step_name, step in _SUB_STEPS:
        try:
            step(state, app, report)
        except WorkloadAPIError as exc:
            logger.debug("Sampler step %s failed for app=%s: %s", step_name, app["name"], exc)
            report.failures.append(f"{step_name}: {exc}")
    return report
