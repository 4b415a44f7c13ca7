from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class EventOut(BaseModel):
    """A recorded workload event; app_id is null for cluster-wide events."""

    id: str
    app_id: Optional[str] = None
    type: str = Field(..., description="Event type (Normal, Warning).")
    reason: str
    message: str
    object_kind: Optional[str] = None
    object_name: Optional[str] = None
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    count: int = Field(1, ge=1)
    created_at: datetime


class EventListResponse(BaseModel):
    items: List[EventOut]
    total: int = Field(..., ge=0)
