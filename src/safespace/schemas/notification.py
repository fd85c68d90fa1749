"""Pydantic schemas for in-app notifications."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class NotificationRead(BaseModel):
    id: int
    type: str
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    action_url: Optional[str] = None
    icon: str
    priority: str
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UnreadCount(BaseModel):
    unread: int
