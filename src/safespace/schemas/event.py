"""Pydantic schemas for audit events."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class EventRead(BaseModel):
    id: int
    stream_id: str
    type: str
    data: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}
