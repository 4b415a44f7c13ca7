from __future__ import annotations

from typing import List, Optional
from uuid import uuid4

from shipyard_monitor.schemas.apps import AppOut
from shipyard_monitor.schemas.common import as_utc, utc_now
from shipyard_monitor.state import AppState


def doc_to_out(doc: dict) -> AppOut:
    return AppOut(id=doc["id"], name=doc["name"], created_at=as_utc(doc["createdAt"]))


# PUBLIC_INTERFACE
def get_app_by_name(state: AppState, name: str) -> Optional[dict]:
    """Return the app doc for a name, or None."""
    cols = state.mongo.collections()
    return cols.apps.find_one({"name": name}, projection={"_id": 0})


# PUBLIC_INTERFACE
def get_app_by_id(state: AppState, app_id: str) -> Optional[dict]:
    """Return the app doc for an id, or None."""
    cols = state.mongo.collections()
    return cols.apps.find_one({"id": app_id}, projection={"_id": 0})


# PUBLIC_INTERFACE
def get_or_create_app(state: AppState, name: str) -> dict:
    """
    Return the app doc for a name, creating it on first reference.

    The insert is an upsert keyed on name so concurrent first references converge on one document.
    """
    cols = state.mongo.collections()
    existing = cols.apps.find_one({"name": name}, projection={"_id": 0})
    if existing:
        return existing

    cols.apps.update_one(
        {"name": name},
        {"$setOnInsert": {"id": str(uuid4()), "name": name, "createdAt": utc_now()}},
        upsert=True,
    )
    return cols.apps.find_one({"name": name}, projection={"_id": 0})


# PUBLIC_INTERFACE
def list_app_docs(state: AppState, sort_by_name: bool = False) -> List[dict]:
    """Return all app docs; store iteration order unless sort_by_name is set."""
    cols = state.mongo.collections()
    cursor = cols.apps.find({}, projection={"_id": 0})
    if sort_by_name:
        cursor = cursor.sort("name", 1)
    return list(cursor)


# PUBLIC_INTERFACE
def resolve_targets(state: AppState, app_name: Optional[str] = None) -> List[dict]:
    """Target set of a collection cycle: every app, or only the named one (empty when it is unknown)."""
    if app_name:
        app = get_app_by_name(state, app_name)
        return [app] if app else []
    return list_app_docs(state)
