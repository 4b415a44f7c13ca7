from __future__ import annotations

import logging

from pymongo import ReturnDocument

from shipyard_monitor.schemas.common import as_utc, utc_now
from shipyard_monitor.schemas.monitoring import MonitoringConfig, MonitoringConfigUpdate
from shipyard_monitor.state import AppState

logger = logging.getLogger(__name__)


# MonitoringConfig field -> Mongo field
_FIELD_MAP = {
    "enabled": "enabled",
    "health_check_path": "healthCheckPath",
    "health_check_interval": "healthCheckInterval",
    "health_check_timeout": "healthCheckTimeout",
    "metrics_enabled": "metricsEnabled",
    "metrics_path": "metricsPath",
    "metrics_port": "metricsPort",
    "retention_days": "retentionDays",
    "cpu_threshold": "cpuThreshold",
    "memory_threshold": "memoryThreshold",
    "error_rate_threshold": "errorRateThreshold",
    "response_time_threshold": "responseTimeThreshold",
}


def _default_doc(app_id: str) -> dict:
    defaults = MonitoringConfig(app_id=app_id)
    now = utc_now()
    doc = {mongo_key: getattr(defaults, attr) for attr, mongo_key in _FIELD_MAP.items()}
    doc.update({"appId": app_id, "createdAt": now, "updatedAt": now})
    return doc


def _doc_to_config(doc: dict) -> MonitoringConfig:
    values = {attr: doc[mongo_key] for attr, mongo_key in _FIELD_MAP.items() if doc.get(mongo_key) is not None}
    return MonitoringConfig(
        app_id=doc["appId"],
        created_at=as_utc(doc.get("createdAt")),
        updated_at=as_utc(doc.get("updatedAt")),
        **values,
    )


# PUBLIC_INTERFACE
def resolve_config(state: AppState, app_id: str) -> MonitoringConfig:
    """
    Return the monitoring config of an app, creating the defaults on first access.

    Creation is an upsert with $setOnInsert keyed on appId, so repeated calls for a never-configured
    app leave exactly one document and return equal values. PyMongoError propagates to the caller.
    """
    cols = state.mongo.collections()
    doc = cols.monitoring_config.find_one({"appId": app_id}, projection={"_id": 0})
    if doc:
        return _doc_to_config(doc)

    doc = cols.monitoring_config.find_one_and_update(
        {"appId": app_id},
        {"$setOnInsert": _default_doc(app_id)},
        upsert=True,
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Created default monitoring config for appId=%s", app_id)
    return _doc_to_config(doc)


# PUBLIC_INTERFACE
def update_config(state: AppState, app_id: str, changes: MonitoringConfigUpdate) -> MonitoringConfig:
    """Apply a partial update to an app's config (creating defaults first if needed)."""
    resolve_config(state, app_id)

    updates = {
        _FIELD_MAP[attr]: value for attr, value in changes.model_dump(exclude_unset=True).items() if value is not None
    }
    updates["updatedAt"] = utc_now()

    cols = state.mongo.collections()
    doc = cols.monitoring_config.find_one_and_update(
        {"appId": app_id},
        {"$set": updates},
        projection={"_id": 0},
        return_document=ReturnDocument.AFTER,
    )
    return _doc_to_config(doc)
