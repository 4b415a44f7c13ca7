from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from shipyard_monitor.config import EngineSettings
from shipyard_monitor.schemas.alerts import AlertStatus
from shipyard_monitor.schemas.common import Severity, utc_now
from shipyard_monitor.schemas.monitoring import MetricKind, MonitoringConfig
from shipyard_monitor.services.metrics_service import latest_per_kind, recent_points
from shipyard_monitor.state import AppState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertRule:
    """
    One row of the rule table: which metric kind feeds which alert type and how it is judged.

    - value_fn turns the raw stored value into the unit the threshold is expressed in
    - threshold_fn picks the threshold from the app config and/or engine settings
    - severity_fn grades a breach (only called when value > threshold)
    """

    alert_type: str
    metric_kind: str
    value_fn: Callable[[float, EngineSettings], float]
    threshold_fn: Callable[[MonitoringConfig, EngineSettings], float]
    severity_fn: Callable[[float, float, EngineSettings], Severity]
    message_fn: Callable[[float, float], str]


def cpu_severity(percent: float, threshold: float, settings: EngineSettings) -> Severity:
    """critical strictly above threshold * multiplier; exactly at the boundary stays warning."""
    if percent > threshold * settings.critical_multiplier:
        return Severity.critical
    return Severity.warning


def _always_warning(value: float, threshold: float, settings: EngineSettings) -> Severity:
    return Severity.warning


DEFAULT_RULES: List[AlertRule] = [
    AlertRule(
        alert_type="cpu_high",
        metric_kind=MetricKind.cpu.value,
        # Percentage of a fixed normalisation amount, not of the pod's cpu limit.
        value_fn=lambda millicores, s: (millicores / s.cpu_normalization_millicores) * 100,
        threshold_fn=lambda cfg, s: cfg.cpu_threshold,
        severity_fn=cpu_severity,
        message_fn=lambda v, t: f"CPU usage {v:.1f}% exceeds threshold {t:.1f}%",
    ),
    AlertRule(
        alert_type="memory_high",
        metric_kind=MetricKind.memory.value,
        value_fn=lambda b, s: b / (1024 * 1024),
        # Fixed checkpoint; cfg.memory_threshold is stored but not applied here.
        threshold_fn=lambda cfg, s: s.memory_checkpoint_mb,
        severity_fn=_always_warning,
        message_fn=lambda v, t: f"Memory usage {v:.1f}MB exceeds threshold {t:.1f}MB",
    ),
]


@dataclass(frozen=True)
class AlertTransition:
    """Outcome of one rule for one app in one evaluation."""

    alert_type: str
    action: str  # "raised" | "updated" | "resolved" | "clear"
    value: float
    threshold: float
    severity: Optional[Severity] = None


# PUBLIC_INTERFACE
def upsert_active_alert(
    state: AppState,
    app_id: str,
    alert_type: str,
    threshold: float,
    value: float,
    severity: Severity,
    message: str,
    now: Optional[datetime] = None,
) -> bool:
    """
    Keep exactly one active alert per (app, type).

    The oldest active alert is updated in place (value, message, severity); its id and createdAt stay,
    and any other active alert of the same (app, type) is resolved. Otherwise a new active alert is
    inserted. Returns True when a new alert was created.

    The partial unique index on active alerts rejects a concurrent second insert; the loser falls back
    to updating the winner's document.
    """
    now = now or utc_now()
    cols = state.mongo.collections()
    active = {"appId": app_id, "type": alert_type, "status": AlertStatus.active.value}
    changes = {
        "$set": {
            "currentValue": float(value),
            "message": message,
            "severity": severity.value,
            "updatedAt": now,
        }
    }

    updated = cols.alerts.find_one_and_update(
        active, changes, sort=[("createdAt", 1)], return_document=ReturnDocument.AFTER
    )
    if updated is not None:
        _resolve_duplicates(state, app_id, alert_type, updated["_id"], now)
        return False

    try:
        cols.alerts.insert_one(
            {
                "appId": app_id,
                "type": alert_type,
                "threshold": float(threshold),
                "currentValue": float(value),
                "severity": severity.value,
                "status": AlertStatus.active.value,
                "message": message,
                "createdAt": now,
                "updatedAt": now,
                "resolvedAt": None,
                "acknowledgedAt": None,
            }
        )
    except DuplicateKeyError:
        logger.info("Active alert app=%s type=%s inserted concurrently; updating it", app_id, alert_type)
        cols.alerts.find_one_and_update(active, changes, sort=[("createdAt", 1)])
        return False
    return True


def _resolve_duplicates(state: AppState, app_id: str, alert_type: str, keep_id, now: datetime) -> int:
    cols = state.mongo.collections()
    res = cols.alerts.update_many(
        {"appId": app_id, "type": alert_type, "status": AlertStatus.active.value, "_id": {"$ne": keep_id}},
        {"$set": {"status": AlertStatus.resolved.value, "resolvedAt": now, "updatedAt": now}},
    )
    if res.modified_count:
        logger.warning(
            "Resolved %s duplicate active alert(s) app=%s type=%s", res.modified_count, app_id, alert_type
        )
    return int(res.modified_count)


# PUBLIC_INTERFACE
def resolve_active_alert(state: AppState, app_id: str, alert_type: str, now: Optional[datetime] = None) -> int:
    """Resolve the active alert(s) of (app, type). No active alert is a no-op; returns how many were resolved."""
    now = now or utc_now()
    cols = state.mongo.collections()
    res = cols.alerts.update_many(
        {"appId": app_id, "type": alert_type, "status": AlertStatus.active.value},
        {"$set": {"status": AlertStatus.resolved.value, "resolvedAt": now, "updatedAt": now}},
    )
    return int(res.modified_count)


# PUBLIC_INTERFACE
def evaluate_app(
    state: AppState,
    app: dict,
    config: MonitoringConfig,
    now: Optional[datetime] = None,
    rules: Optional[List[AlertRule]] = None,
) -> List[AlertTransition]:
    """
    Evaluate the rule table against the newest metric point per kind in the alert window.

    Above threshold (strictly) -> upsert the active alert; at or below -> resolve it.
    A rule whose metric kind has no point in the window is skipped entirely.
    """
    settings = state.config.engine
    now = now or utc_now()
    window_start = now - timedelta(seconds=settings.alert_window_seconds)

    latest = latest_per_kind(recent_points(state, app["id"], window_start))

    transitions: List[AlertTransition] = []
    for rule in rules if rules is not None else DEFAULT_RULES:
        point = latest.get(rule.metric_kind)
        if point is None:
            continue

        value = rule.value_fn(float(point["value"]), settings)
        threshold = float(rule.threshold_fn(config, settings))

        if value > threshold:
            severity = rule.severity_fn(value, threshold, settings)
            created = upsert_active_alert(
                state, app["id"], rule.alert_type, threshold, value, severity, rule.message_fn(value, threshold), now
            )
            transitions.append(
                AlertTransition(rule.alert_type, "raised" if created else "updated", value, threshold, severity)
            )
            if created:
                logger.info("Alert raised app=%s type=%s severity=%s", app["name"], rule.alert_type, severity.value)
        else:
            resolved = resolve_active_alert(state, app["id"], rule.alert_type, now)
            transitions.append(AlertTransition(rule.alert_type, "resolved" if resolved else "clear", value, threshold))
            if resolved:
                logger.info("Alert resolved app=%s type=%s", app["name"], rule.alert_type)

    return transitions
