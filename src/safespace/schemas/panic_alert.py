"""Pydantic schemas for panic alerts."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from safespace.schemas.user import UserBrief


class PanicAlertCreate(BaseModel):
    location_data: Optional[dict[str, Any]] = None


class PanicAlertResolve(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=2000)


class AlertNotificationRead(BaseModel):
    notified_user_id: int
    notification_type: str
    viewed_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PanicAlertRead(BaseModel):
    id: int
    child_id: int
    child: Optional[UserBrief] = None
    triggered_at: datetime
    status: str
    location_data: Optional[dict[str, Any]] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[UserBrief] = None
    notes: Optional[str] = None
    notifications: list[AlertNotificationRead] = []

    model_config = {"from_attributes": True}


class PanicAlertResponse(BaseModel):
    alert: PanicAlertRead
    broadcast_success: bool


class UnviewedCount(BaseModel):
    unviewed: int
