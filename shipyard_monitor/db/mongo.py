from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import OperationFailure, PyMongoError

from shipyard_monitor.config import DEFAULT_DB_NAME

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MongoCollections:
    """Convenience wrapper for app collections."""

    apps: Collection
    metrics: Collection
    health_checks: Collection
    alerts: Collection
    events: Collection
    monitoring_config: Collection


class MongoManager:
    """
    MongoDB connection manager for the monitor's own storage DB.

    A pre-built client (e.g. a mongomock client) can be handed in instead of a URI.
    """

    def __init__(self, mongo_uri: str, db_name: str = DEFAULT_DB_NAME, client: Optional[MongoClient] = None):
        self._mongo_uri = mongo_uri
        self._db_name = db_name
        self._client: Optional[MongoClient] = client
        self._lock = RLock()

    def connect(self) -> None:
        """Initialize the Mongo client if needed."""
        with self._lock:
            if self._client is not None:
                return
            # MongoClient is thread-safe and manages internal pooling.
            self._client = MongoClient(self._mongo_uri, connect=True)

    # PUBLIC_INTERFACE
    def ping(self, timeout_ms: int = 1500) -> bool:
        """Ping the configured MongoDB to validate connectivity."""
        try:
            self.connect()
            assert self._client is not None
            self._client.admin.command("ping", maxTimeMS=int(max(250, timeout_ms)))
            return True
        except PyMongoError:
            logger.exception("Mongo ping failed (PyMongoError)")
            return False
        except Exception:
            logger.exception("Mongo ping failed (unexpected)")
            return False

    def close(self) -> None:
        """Close the Mongo client."""
        with self._lock:
            if self._client is None:
                return
            try:
                self._client.close()
            except Exception:
                logger.exception("Error closing MongoClient")
            self._client = None

    def db(self) -> Database:
        """Return the monitor database handle."""
        self.connect()
        assert self._client is not None
        return self._client[self._db_name]

    def collections(self) -> MongoCollections:
        """Return app collections."""
        db = self.db()
        return MongoCollections(
            apps=db["apps"],
            metrics=db["metrics"],
            health_checks=db["health_checks"],
            alerts=db["alerts"],
            events=db["events"],
            monitoring_config=db["monitoring_config"],
        )

    def init_indexes(self) -> None:
        """
        Create required indexes (idempotent).

        Retention is enforced by the sweeper after each insert, so no TTL indexes are created here.
        """
        cols = self.collections()

        cols.apps.create_index([("id", ASCENDING)], unique=True, name="idx_apps_id")
        cols.apps.create_index([("name", ASCENDING)], unique=True, name="idx_apps_name")

        cols.metrics.create_index([("appId", ASCENDING), ("ts", DESCENDING)], name="idx_metrics_app_ts")
        cols.metrics.create_index([("kind", ASCENDING), ("ts", DESCENDING)], name="idx_metrics_kind_ts")

        cols.health_checks.create_index(
            [("appId", ASCENDING), ("checkedAt", DESCENDING)], name="idx_health_checks_app_checkedAt"
        )

        cols.alerts.create_index([("appId", ASCENDING), ("status", ASCENDING)], name="idx_alerts_app_status")
        cols.alerts.create_index(
            [("appId", ASCENDING), ("type", ASCENDING), ("status", ASCENDING)], name="idx_alerts_app_type_status"
        )
        cols.alerts.create_index([("createdAt", DESCENDING)], name="idx_alerts_createdAt_desc")
        try:
            # At most one active alert per (app, type); resolved history is unconstrained.
            cols.alerts.create_index(
                [("appId", ASCENDING), ("type", ASCENDING)],
                unique=True,
                partialFilterExpression={"status": "active"},
                name="uniq_alerts_active_app_type",
            )
        except OperationFailure:
            # Existing duplicates block the build; upserts resolve them and the next startup retries.
            logger.warning("Could not create unique active-alert index; duplicate active alerts exist")

        cols.events.create_index([("appId", ASCENDING), ("createdAt", DESCENDING)], name="idx_events_app_createdAt")
        cols.events.create_index([("type", ASCENDING), ("createdAt", DESCENDING)], name="idx_events_type_createdAt")

        cols.monitoring_config.create_index([("appId", ASCENDING)], unique=True, name="idx_monitoring_config_app")
