from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from shipyard_monitor.services.alerts_engine import evaluate_app
from shipyard_monitor.services.apps_service import resolve_targets
from shipyard_monitor.services.config_resolver import resolve_config
from shipyard_monitor.services.events_service import sync_app_events
from shipyard_monitor.services.health_prober import probe_app
from shipyard_monitor.services.metrics_sampler import sample_app
from shipyard_monitor.state import AppState

logger = logging.getLogger(__name__)


class CollectionError(RuntimeError):
    """Raised when the target application set cannot be resolved; aborts the whole run."""


@dataclass
class StageOutcome:
    app_name: str
    stage: str
    ok: bool
    detail: Optional[str] = None


@dataclass
class CollectionReport:
    """Per-app, per-stage outcomes of one collection cycle."""

    apps: List[str] = field(default_factory=list)
    outcomes: List[StageOutcome] = field(default_factory=list)
    stopped: bool = False

    @property
    def warnings(self) -> List[StageOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def add(self, app_name: str, stage: str, ok: bool, detail: Optional[str] = None) -> None:
        self.outcomes.append(StageOutcome(app_name=app_name, stage=stage, ok=ok, detail=detail))
        if not ok:
            logger.warning("%s stage failed for app=%s: %s", stage, app_name, detail)


def _collect_app(state: AppState, app: dict, report: CollectionReport) -> None:
    """Run config -> sample -> probe -> alerts -> events for one app; every stage is isolated."""
    name = app["name"]

    try:
        config = resolve_config(state, app["id"])
        report.add(name, "config", True)
    except Exception as exc:
        # Probe and alert evaluation need the config; sampling does not.
        config = None
        report.add(name, "config", False, str(exc))

    try:
        sample = sample_app(state, app)
        if sample.ok:
            report.add(name, "metrics", True, f"{sample.points_written} points")
        else:
            report.add(name, "metrics", False, "; ".join(sample.failures))
    except Exception as exc:
        report.add(name, "metrics", False, str(exc))

    if config is not None:
        try:
            result = probe_app(state, app, config)
            report.add(name, "health", True, result.status.value if result else "disabled")
        except Exception as exc:
            report.add(name, "health", False, str(exc))

        try:
            transitions = evaluate_app(state, app, config)
            report.add(name, "alerts", True, f"{len(transitions)} rules evaluated")
        except Exception as exc:
            report.add(name, "alerts", False, str(exc))

    try:
        new_events = sync_app_events(state, app)
        report.add(name, "events", True, f"{new_events} new")
    except Exception as exc:
        report.add(name, "events", False, str(exc))


# PUBLIC_INTERFACE
def run_collection(
    state: AppState,
    app_name: Optional[str] = None,
    stop_event: Optional[threading.Event] = None,
) -> CollectionReport:
    """
    Run one collection cycle over all apps (or only app_name), sequentially in store order.

    Failures of a stage for one app are logged as warnings and recorded in the report; they never stop
    other apps. Only failing to resolve the target set raises (CollectionError). When stop_event is set,
    the run ends before the next app's pipeline starts; calls already in flight are not interrupted.
    """
    if stop_event is None:
        stop_event = state.stop_event
    try:
        targets = resolve_targets(state, app_name)
    except Exception as exc:
        raise CollectionError(f"failed to get apps: {exc}") from exc

    report = CollectionReport()
    for app in targets:
        if stop_event.is_set():
            report.stopped = True
            logger.info("Collection stopped before app=%s", app.get("name"))
            break
        report.apps.append(app["name"])
        _collect_app(state, app, report)

    logger.info("Collection cycle done apps=%s warnings=%s", len(report.apps), len(report.warnings))
    return report


# PUBLIC_INTERFACE
async def collector_loop(state: AppState, shutdown_event: asyncio.Event) -> None:
    """
    Background loop that runs a collection cycle every collector_interval_sec.

    The blocking pipeline (pymongo, kubernetes, httpx) runs in a worker thread. Errors are logged and
    the loop continues with the next tick.
    """
    interval = max(1, int(state.config.collector_interval_sec))
    logger.info("Collector started (interval=%ss)", interval)

    while not shutdown_event.is_set():
        tick_started = datetime.now(timezone.utc)
        try:
            await asyncio.to_thread(run_collection, state)
        except CollectionError:
            logger.exception("Collector could not resolve target apps")
        except Exception:
            logger.exception("Collector tick failed")

        elapsed = (datetime.now(timezone.utc) - tick_started).total_seconds()
        sleep_for = max(0.1, interval - elapsed)
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            pass

    logger.info("Collector stopped")
