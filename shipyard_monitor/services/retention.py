"""Horizon-per-insert pruning of append-only collections."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from pymongo.collection import Collection

from shipyard_monitor.schemas.common import utc_now

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def sweep(collection: Collection, ts_field: str, horizon: timedelta, now: Optional[datetime] = None) -> int:
    """
    Delete documents whose ts_field is older than now - horizon; return how many were removed.

    Called right after every insert into metrics, health_checks and events, so a horizon is enforced
    at the latest on the next write rather than exactly at expiry.
    """
    cutoff = (now or utc_now()) - horizon
    res = collection.delete_many({ts_field: {"$lt": cutoff}})
    if res.deleted_count:
        logger.debug("Retention removed %s docs from %s older than %s", res.deleted_count, collection.name, cutoff)
    return int(res.deleted_count)
