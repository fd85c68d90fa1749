"""Pydantic schemas for therapist ↔ client connections."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from safespace.schemas.user import UserBrief


class ConnectionCreate(BaseModel):
    therapist_id: int
    client_id: int
    client_type: str = Field(..., pattern=r"^(guardian|child)$")
    connection_type: str = Field(
        default="admin_assigned",
        pattern=r"^(admin_assigned|guardian_requested|guardian_child_assignment)$",
    )


class ConnectionStatusUpdate(BaseModel):
    status: str = Field(..., pattern=r"^(active|inactive|suspended|terminated)$")


class ConnectionRead(BaseModel):
    id: int
    therapist_id: int
    therapist: Optional[UserBrief] = None
    client_id: int
    client: Optional[UserBrief] = None
    client_type: str
    connection_type: str
    status: str
    assigned_at: datetime
    terminated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConnectionResponse(BaseModel):
    connection: ConnectionRead
    # None when the status did not change
    broadcast_success: Optional[bool] = None
